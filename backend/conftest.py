import sys
from pathlib import Path


# backend/src holds top-level modules (models, config, services.*) imported directly by tests.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
