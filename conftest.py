"""
Pytest configuration for the tiler test suite.

Puts the repository root on the Python path so tests can import
`tiling` and `api` without an install.
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))
