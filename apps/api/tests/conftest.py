import sys
from pathlib import Path

API_SRC = Path(__file__).resolve().parents[1] / "src"
TESTS_SRC = Path(__file__).resolve().parent
CONFIG_SRC = Path(__file__).resolve().parents[3] / "packages" / "config" / "src"

sys.path.insert(0, str(CONFIG_SRC))
sys.path.insert(0, str(API_SRC))
sys.path.insert(0, str(TESTS_SRC))
