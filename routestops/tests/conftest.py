import os
import sys
from pathlib import Path

# Ensure the project root is on sys.path for direct pytest runs
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep test runs from writing app.log into the working directory
os.environ.setdefault('LOG_FILE', os.devnull)
