"""Pytest configuration for threadweave tests."""

import os
import sys
from pathlib import Path

# Ensure repo root on sys.path for flat-module imports.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep developer overrides out of the defaults under test.
for _key in list(os.environ):
    if _key.startswith("THREADWEAVE_"):
        del os.environ[_key]
