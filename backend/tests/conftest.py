import os
import sys


# Tests import `backend.*` (and the fake store as `backend.tests.fake_store`),
# which requires the repo root on sys.path when pytest runs from `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)
