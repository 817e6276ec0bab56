from __future__ import annotations

import argparse
import logging
import os
import signal
import time
from pathlib import Path
from typing import Any

from app.wiring import build_app
from ripple.config import ConfigError, load_config

logger = logging.getLogger("ripple")

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_CONNECT_FAILED = 3
EXIT_AUTH_FAILED = 4


def _arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ripple-relay", description="Twitch chat -> Supabase event relay.")
    p.add_argument("--base-dir", default=os.getenv("RIPPLE_BASE_DIR", "."), help="Directory holding config/.")
    p.add_argument("--log-level", default=os.getenv("RIPPLE_LOG_LEVEL", "INFO"))
    p.add_argument("--dry-run", action="store_true", help="Classify and log events without posting them.")
    return p


def configure_logging(level: str) -> None:
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=getattr(logging, str(level or "INFO").upper(), logging.INFO),
        format="%(asctime)sZ %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def _install_signal_handlers(service: Any) -> None:
    def _handle(signum: int, _frame: Any) -> None:
        logger.info("received signal %s, shutting down", signum)
        service.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: list[str] | None = None) -> int:
    args = _arg_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(Path(args.base_dir))
        if args.dry_run:
            cfg.network_enabled = False
        cfg.validate()
    except ConfigError as exc:
        logger.error("config error: %s", exc)
        return EXIT_CONFIG

    logger.info("Be the Ripple relay is starting... %r", cfg)
    if not cfg.network_enabled:
        logger.warning("network disabled: events will be logged, not posted")

    app = build_app(cfg)
    service = app.service
    _install_signal_handlers(service)
    service.start()
    while service.is_running():
        time.sleep(0.5)
    service.stop()
    service.join(timeout=10.0)

    if service.auth_failed:
        return EXIT_AUTH_FAILED
    if service.fatal:
        return EXIT_CONNECT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
