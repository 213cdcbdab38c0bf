import os
import sys
import tempfile
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep imports of settings/db from touching the real application directory.
os.environ.setdefault("STOCKGRID_DATA_DIR", tempfile.mkdtemp(prefix="stockgrid-tests-"))

import db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_cache(tmp_path):
    db.set_database_path(tmp_path / "cache.db")
    yield
