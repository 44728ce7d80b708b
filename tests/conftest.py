"""
Pytest configuration.

Adds the project root to the Python path so tests can import domain,
repositories, services, api and scripts, and the tests directory so they can
share the fakes in `fakes.py`.
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))
