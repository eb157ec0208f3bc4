"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: puts the backend package and the in-memory
    Mongo fakes (fake_mongo.py) on the import path.
"""

from __future__ import annotations

import sys
from pathlib import Path

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)


# Shared in-memory Mongo fakes live next to the tests.
_TESTS_DIR = str(_THIS_FILE.parent)
if _TESTS_DIR not in sys.path:
    sys.path.insert(0, _TESTS_DIR)
