import os
import pathlib
import sys
import tempfile

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))


def pytest_configure():
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="fraud-guard-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture(scope="session")
def sqlite_engine():
    from backend.app.db import Base, engine
    from backend.app import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(sqlite_engine):
    from backend.app.db import Base, SessionLocal

    with sqlite_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    return SessionLocal


@pytest.fixture()
def sqlite_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def sql_engine(session_factory):
    from backend.tests.fraud_factories import NOW
    from backend.app.fraud.engine import FraudDetectionEngine
    from backend.app.fraud.sql_store import (
        SqlAlertRepository,
        SqlExpenseHistory,
        SqlFingerprintRepository,
        SqlSettingsRepository,
    )

    return FraudDetectionEngine(
        fingerprints=SqlFingerprintRepository(session_factory),
        alerts=SqlAlertRepository(session_factory),
        settings=SqlSettingsRepository(session_factory),
        history=SqlExpenseHistory(session_factory),
        max_workers=4,
        clock=lambda: NOW,
    )


@pytest.fixture()
def memory_engine():
    from backend.tests.fraud_factories import NOW
    from backend.app.fraud.engine import FraudDetectionEngine
    from backend.app.fraud.memory import (
        InMemoryAlertRepository,
        InMemoryExpenseHistory,
        InMemoryFingerprintRepository,
        InMemorySettingsRepository,
    )

    return FraudDetectionEngine(
        fingerprints=InMemoryFingerprintRepository(),
        alerts=InMemoryAlertRepository(),
        settings=InMemorySettingsRepository(),
        history=InMemoryExpenseHistory(),
        max_workers=4,
        clock=lambda: NOW,
    )


@pytest.fixture()
def api_client(sql_engine):
    from fastapi.testclient import TestClient

    from backend.app.api.deps import get_fraud_engine
    from backend.app.main import app

    app.dependency_overrides[get_fraud_engine] = lambda: sql_engine
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_fraud_engine, None)
