from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    # Lets a plain checkout run without `pip install -e .`.
    src_dir = (Path(__file__).resolve().parent / "src").resolve()
    if str(src_dir) not in sys.path:
        sys.path.insert(0, str(src_dir))


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()
    from ripple.run_relay import main as _main

    return int(_main(argv))


if __name__ == "__main__":
    raise SystemExit(main())
