"""
Pytest configuration for Mutex Explorer.

This file ensures that the 'mutexsim' package is importable when running pytest
from the project root directory without installing it first.
"""

import sys
from pathlib import Path

# Add project root to Python path so 'mutexsim' package is importable
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))
