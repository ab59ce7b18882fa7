from __future__ import annotations

import os
import tempfile

# Must run before backend.app.db.session builds its engine.
os.environ["DATABASE_URL"] = os.getenv(
    "TEST_DATABASE_URL", f"sqlite:///{tempfile.mkdtemp(prefix='crawler-tests-')}/test.db"
)
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")

import pytest  # noqa: E402

from backend.app.db.models import Base  # noqa: E402
from backend.app.db.session import ENGINE  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_schema():
    Base.metadata.drop_all(ENGINE)
    Base.metadata.create_all(ENGINE)
    yield
