import sys
from pathlib import Path


# backend/src holds the flat modules (config, models, ...) and the services package.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
