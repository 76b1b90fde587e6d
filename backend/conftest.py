import threading
import time
from contextlib import nullcontext
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ratings.api.scheduler import get_scheduler
from ratings.db import get_db
from ratings.main import app
from ratings.models import Contest, ContestResult
from ratings.scheduler import RatingsScheduler

SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _create_test_schema(conn) -> None:
    conn.execute(text("PRAGMA foreign_keys=ON"))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS contests (
            id VARCHAR(64) PRIMARY KEY,
            start TIMESTAMP NOT NULL,
            game_id VARCHAR(64)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS contest_results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            contest_id VARCHAR(64) NOT NULL,
            player_id VARCHAR(64) NOT NULL,
            place INTEGER,
            UNIQUE(contest_id, player_id),
            FOREIGN KEY (contest_id) REFERENCES contests(id)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS rating_latest (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            player_id VARCHAR(64) NOT NULL,
            scope_type VARCHAR(10) NOT NULL,
            scope_id VARCHAR(64),
            rating FLOAT NOT NULL,
            rd FLOAT NOT NULL,
            volatility FLOAT NOT NULL,
            games_played INTEGER NOT NULL DEFAULT 0,
            wins INTEGER NOT NULL DEFAULT 0,
            losses INTEGER NOT NULL DEFAULT 0,
            last_period_end TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL,
            UNIQUE(player_id, scope_type, scope_id)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS rating_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            player_id VARCHAR(64) NOT NULL,
            scope_type VARCHAR(10) NOT NULL,
            scope_id VARCHAR(64),
            period_end TIMESTAMP NOT NULL,
            rating FLOAT NOT NULL,
            rd FLOAT NOT NULL,
            volatility FLOAT NOT NULL,
            period_games INTEGER NOT NULL DEFAULT 0,
            period_wins INTEGER NOT NULL DEFAULT 0,
            period_losses INTEGER NOT NULL DEFAULT 0,
            games_played INTEGER NOT NULL DEFAULT 0,
            wins INTEGER NOT NULL DEFAULT 0,
            losses INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL,
            UNIQUE(player_id, scope_type, scope_id, period_end)
        )
    """))
    conn.commit()


def _reset_test_schema(conn) -> None:
    conn.execute(text("DROP TABLE IF EXISTS rating_history"))
    conn.execute(text("DROP TABLE IF EXISTS rating_latest"))
    conn.execute(text("DROP TABLE IF EXISTS contest_results"))
    conn.execute(text("DROP TABLE IF EXISTS contests"))
    conn.commit()
    _create_test_schema(conn)


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _db_override():
    app.dependency_overrides[get_db] = _override_get_db
    with engine.connect() as conn:
        _reset_test_schema(conn)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(_db_override):
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def db_session(_db_override):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_contest(db_session):
    def _create_contest(
        contest_id: str,
        start: datetime,
        placements: dict[str, int | None],
        game_id: str | None = None,
    ) -> Contest:
        contest = Contest(id=contest_id, start=start, game_id=game_id)
        db_session.add(contest)
        db_session.flush()
        for player_id, place in placements.items():
            db_session.add(ContestResult(contest_id=contest_id, player_id=player_id, place=place))
        db_session.commit()
        return contest

    return _create_contest


class FakeOrchestrator:
    """Records calls; optionally blocks on a gate or raises."""

    def __init__(self, gate: threading.Event | None = None, error: Exception | None = None) -> None:
        self.gate = gate
        self.error = error
        self.calls: list[tuple] = []
        self.started = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _work(self, call: tuple) -> None:
        with self._lock:
            self.calls.append(call)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.error is not None:
                raise self.error
        finally:
            with self._lock:
                self.active -= 1

    def recalculate_month(self, year: int, month: int) -> list:
        self._work(("month", year, month))
        return []

    def recalculate_all_historical(self, now: datetime | None = None) -> list:
        self._work(("historical",))
        return []


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def make_scheduler():
    schedulers: list[RatingsScheduler] = []

    def _make_scheduler(orchestrator: FakeOrchestrator, clock=None, monthly: bool = False) -> RatingsScheduler:
        kwargs = {"clock": clock} if clock is not None else {}
        scheduler = RatingsScheduler(lambda: nullcontext(orchestrator), **kwargs)
        scheduler.start(monthly=monthly)
        schedulers.append(scheduler)
        return scheduler

    yield _make_scheduler
    for scheduler in schedulers:
        scheduler.shutdown(wait=False)


@pytest.fixture
def override_scheduler():
    def _override(scheduler: RatingsScheduler) -> None:
        app.dependency_overrides[get_scheduler] = lambda: scheduler

    return _override


@pytest.fixture
def fake_orchestrator():
    def _fake_orchestrator(gate: threading.Event | None = None, error: Exception | None = None) -> FakeOrchestrator:
        return FakeOrchestrator(gate=gate, error=error)

    return _fake_orchestrator


@pytest.fixture
def wait_for():
    return wait_until
