import itertools
import os
import tempfile
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

# taskhub.db builds its engine at import time; point it at a throwaway file
# before any test module imports the package.
_BOOT_DIR = Path(tempfile.mkdtemp(prefix="taskhub-tests-"))
_BOOT_SETTINGS = _BOOT_DIR / "settings.yml"
_BOOT_SETTINGS.write_text(
    "database:\n  path: '{db}'\nlogging:\n  level: 'INFO'\n  dir: '{logs}'\n".format(
        db=str(_BOOT_DIR / "boot.db"), logs=str(_BOOT_DIR / "logs")
    )
)
os.environ["TASKHUB_SETTINGS"] = str(_BOOT_SETTINGS)

from taskhub.config import get_settings  # noqa: E402
from taskhub.db import Base, make_engine  # noqa: E402
from taskhub.models import Staff, Task, TaskStatus  # noqa: E402
from taskhub.store import insert_assignees, insert_task  # noqa: E402


@pytest.fixture
def settings_tmp(tmp_path, monkeypatch):
    """Isolate settings per test run."""
    path = tmp_path / "settings.yml"
    path.write_text(
        """
app:
  name: "Taskhub"
  timezone: "UTC"
security:
  jwt_secret: "test-jwt-secret"
  token_minutes: 60
database:
  path: "{db}"
logging:
  level: "INFO"
  dir: "{logs}"
  retention_days: 30
sweep:
  enabled: false
assignees:
  max_per_task: 5
""".format(db=str(tmp_path / "test.db"), logs=str(tmp_path / "logs")).lstrip()
    )
    monkeypatch.setenv("TASKHUB_SETTINGS", str(path))
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


@pytest.fixture
def engine(settings_tmp, tmp_path):
    eng = make_engine(str(tmp_path / "test.db"))
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    SessionTest = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionTest()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_staff(db):
    counter = itertools.count(1)

    def _make(name: str, department: str | None = "Sales Manager", **kw) -> Staff:
        s = Staff(
            auth_user_id=f"auth-{next(counter)}",
            full_name=name,
            department=department,
            is_manager=kw.get("is_manager", False),
            is_admin=kw.get("is_admin", False),
        )
        db.add(s)
        db.commit()
        db.refresh(s)
        return s

    return _make


@pytest.fixture
def make_task(db):
    def _make(creator: Staff, *, assignees=(), **fields) -> Task:
        values = {
            "title": "Weekly report",
            "notes": "No notes...",
            "status": TaskStatus.not_started,
            "repeat_interval": 0,
            "creator_id": int(creator.id),
        }
        values.update(fields)
        task = insert_task(db, **values)
        insert_assignees(db, [(int(task.id), int(s.id), int(creator.id)) for s in assignees])
        db.refresh(task)
        return task

    return _make


@pytest.fixture
def jan14():
    return date(2024, 1, 14)
