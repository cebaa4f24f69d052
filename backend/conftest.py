# Ensure 'backend/' is on sys.path so 'import home_services.*' and
# 'import tests.*' work regardless of the pytest rootdir.
from pathlib import Path
import sys

_BACKEND_DIR = Path(__file__).resolve().parent  # <repo>/backend
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))
