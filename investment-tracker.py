"""Command line launcher for Investment Tracker when run from a source checkout."""

import sys
from pathlib import Path

_src = Path(__file__).resolve().parent / "src"
if _src.is_dir() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from investment_tracker.app import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
