"""Root conftest: test env and DB guard apply to every test path."""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("EAV_LOG_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs"))

from tests._db_bootstrap import ensure_test_db_guard  # noqa: E402

# Fails early if DATABASE_TEST_URL points at a non-test database
if os.getenv("DATABASE_TEST_URL"):
    ensure_test_db_guard()
