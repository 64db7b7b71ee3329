from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Generator

_TMP_ROOT = Path(tempfile.mkdtemp(prefix="chronoflow-tests-"))
os.environ.setdefault("CF_SQLITE_PATH", str(_TMP_ROOT / "app.db"))
os.environ.setdefault("CF_EXPORT_DIR", str(_TMP_ROOT / "exports"))
os.environ.setdefault("TZ", "Europe/Berlin")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from chronoflow import models
from chronoflow.database import get_db
from chronoflow.main import app, get_workspace
from chronoflow.store import KeyValueStore
from chronoflow.utils import LOCAL_TZ
from chronoflow.workspace import Workspace


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: dt.datetime) -> None:
        self.current = start

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs: float) -> dt.datetime:
        self.current += dt.timedelta(**kwargs)
        return self.current

    def set(self, value: dt.datetime) -> None:
        self.current = value


@pytest.fixture()
def sample_day() -> dt.date:
    # a Monday
    return dt.date(2024, 1, 8)


@pytest.fixture()
def at(sample_day: dt.date):
    def build(hour: int, minute: int = 0, day: dt.date = sample_day) -> dt.datetime:
        return dt.datetime.combine(day, dt.time(hour, minute), tzinfo=LOCAL_TZ)

    return build


@pytest.fixture()
def clock(at) -> FrozenClock:
    return FrozenClock(at(9))


@pytest.fixture()
def engine(tmp_path: Path):
    url = f"sqlite:///{tmp_path / 'test.db'}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def store(session_factory) -> KeyValueStore:
    return KeyValueStore(session_factory)


@pytest.fixture()
def workspace(store: KeyValueStore, clock: FrozenClock) -> Workspace:
    ws = Workspace(store, clock)
    ws.load()
    return ws


@pytest.fixture()
def session(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(workspace: Workspace, session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workspace] = lambda: workspace
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
