import os
import tempfile
from unittest.mock import patch

import pytest

# Point data/log dirs at a temp dir before settings is imported
_test_root = tempfile.mkdtemp(prefix="constraint_desk_tests_")
os.environ.setdefault("CONSTRAINT_DESK_DATA_DIR", os.path.join(_test_root, "data"))
os.environ.setdefault("CONSTRAINT_DESK_LOGS_DIR", os.path.join(_test_root, "logs"))

from constraint_desk.config import settings  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def use_test_db(tmp_path_factory):
    # Route all database operations in tests to a temporary DuckDB file
    temp_dir = tmp_path_factory.mktemp("test_db")
    settings.DB_PATH = temp_dir / "test_constraint_desk.duckdb"
    yield


@pytest.fixture()
def fresh_db(tmp_path):
    """A brand-new DuckDB file for one test."""
    import constraint_desk.database as db_mod

    db_mod.close_db()
    with patch.object(db_mod.settings, "DB_PATH", tmp_path / "test.duckdb"):
        conn = db_mod.get_db()
        yield conn
        db_mod.close_db()
