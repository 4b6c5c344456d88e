"""
pytest configuration for order pipeline tests.

Adds src directory to Python path for imports.
"""

import sys
from pathlib import Path

src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))
