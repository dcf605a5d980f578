"""Pytest fixtures, fakes and factories.

All model modules are imported through ``lots_ingest.models.db`` before
``create_all`` so every relationship target is mapped.
"""
import os
import sys
import uuid
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'lots_ingest' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("ENABLE_BACKGROUND_WORKERS", "false")

# File-based SQLite so the API session, the job scopes and the test session
# all see the same rows.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_lots.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Rebind before the app is imported so every session_scope() without an
# explicit factory uses the test database.
import lots_ingest.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore

from lots_ingest.main import app  # noqa: E402
from lots_ingest.database import Base  # noqa: E402
from lots_ingest.api import deps  # noqa: E402
from lots_ingest.models.db import Bidding, Lot, LotAuditEvent, LotCadastralNumber, LotCategory  # noqa: E402
from lots_ingest.models.db.enums import AuditEventType, AuditStatus  # noqa: E402
from lots_ingest.runtime import JobScope, ServiceContainer  # noqa: E402
from lots_ingest.scrapers.fetchers import FetchError  # noqa: E402
from lots_ingest.services.coordinates import Coordinates  # noqa: E402
from lots_ingest.services.persistence import LotRepository  # noqa: E402
from lots_ingest.utils.time import utc_now  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_lots.db")
    except OSError:
        pass

@pytest.fixture(autouse=True)
def _clean_tables(create_test_db):
    """Every test starts from empty tables."""
    yield
    session = TestingSessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    finally:
        session.close()

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

# ---------- Fakes for external services ----------

class FakeChatClient:
    """Returns queued responses in order; queued exceptions are raised."""

    model = "fake-model"

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, messages):
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("unexpected provider call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeCoordinatesClient:
    """cadastral number -> Coordinates, or an exception instance to raise."""

    def __init__(self, answers=None):
        self.answers = dict(answers or {})
        self.calls = []

    async def lookup(self, cadastral_number):
        self.calls.append(cadastral_number)
        answer = self.answers.get(cadastral_number)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            from lots_ingest.services.coordinates import CoordinatesNotFound
            raise CoordinatesNotFound(cadastral_number)
        return answer


class FakeFetcher:
    """PageFetcher serving canned HTML.

    GETs are keyed by URL. POSTs are keyed by ``__EVENTARGUMENT``, or by
    ``__EVENTTARGET`` when the argument is empty. Missing keys and queued
    exceptions behave like a failed request.
    """

    def __init__(self, pages=None, posts=None):
        self.pages = dict(pages or {})
        self.posts = dict(posts or {})
        self.get_calls = []
        self.post_calls = []
        self.entered = 0
        self.closed = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed += 1

    async def get(self, url):
        self.get_calls.append(url)
        return self._answer(url, self.pages.get(url))

    async def post(self, url, form):
        self.post_calls.append(dict(form))
        key = form.get("__EVENTARGUMENT") or form.get("__EVENTTARGET")
        return self._answer(url, self.posts.get(key))

    @staticmethod
    def _answer(url, answer):
        if answer is None:
            raise FetchError(url, "HTTP 404", status=404)
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture()
def chat_client():
    return FakeChatClient()

@pytest.fixture()
def coordinates_client():
    return FakeCoordinatesClient()

@pytest.fixture()
def fetcher():
    return FakeFetcher()

@pytest.fixture()
def container(chat_client, coordinates_client, fetcher):
    """Service container wired to the fakes; loops are never started."""
    c = ServiceContainer(
        session_factory=TestingSessionLocal,
        chat_client=chat_client,
        coordinates_client=coordinates_client,
        http_fetcher_factory=lambda: fetcher,
        browser_fetcher_factory=lambda: fetcher,
    )
    c.throttle.interval = 0.0
    app.state.container = c  # type: ignore[attr-defined]
    yield c
    if getattr(app.state, "container", None) is c:
        del app.state.container

@pytest.fixture()
def scope_factory():
    """Scope factory without a container, for services that do not need one."""
    @contextmanager
    def _open():
        session = TestingSessionLocal()
        try:
            yield JobScope(session=session, repository=LotRepository(session), container=None)  # type: ignore[arg-type]
        finally:
            session.close()
    return _open

@pytest.fixture()
def client(container):
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def bidding_factory(db_session):
    def _create(bidding_id: str | None = None, *, trade_period: str | None = None, finalized: bool = False, lots=()):
        bidding = Bidding(
            id=bidding_id or str(uuid.uuid4()),
            trade_number=f"T-{uuid.uuid4().hex[:6]}",
            platform="Test Platform",
            trade_period=trade_period,
            is_trade_statuses_finalized=finalized,
        )
        for number in lots:
            bidding.lots.append(Lot(lot_number=number, description=f"Lot {number}"))
        db_session.add(bidding)
        db_session.commit()
        db_session.refresh(bidding)
        return bidding
    return _create

@pytest.fixture()
def lot_factory(db_session):
    def _create(
        description: str | None = "Квартира 45 кв.м, г. Москва",
        *,
        cadastral_numbers=(),
        categories=(),
        start_price: Decimal | None = Decimal("1000000.00"),
        lot_number: str | None = "1",
        bidding_id: str | None = None,
    ):
        lot = Lot(
            description=description,
            start_price=start_price,
            lot_number=lot_number,
            bidding_id=bidding_id,
        )
        for number in cadastral_numbers:
            lot.cadastral_numbers.append(LotCadastralNumber(cadastral_number=number))
        for name in categories:
            lot.categories.append(LotCategory(name=name))
        db_session.add(lot)
        db_session.commit()
        db_session.refresh(lot)
        return lot
    return _create

@pytest.fixture()
def audit_factory(db_session):
    def _create(lot_id: str, status: AuditStatus, *, age_seconds: float = 0, event_type=AuditEventType.CLASSIFICATION):
        from datetime import timedelta
        event = LotAuditEvent(
            lot_id=lot_id,
            event_type=event_type.value,
            status=status,
            source="Test",
            timestamp=utc_now() - timedelta(seconds=age_seconds),
        )
        db_session.add(event)
        db_session.commit()
        return event
    return _create

def audit_statuses(session, lot_id, event_type=AuditEventType.CLASSIFICATION):
    """Statuses of a lot's audit trail in insertion order."""
    session.expire_all()
    return [e.status for e in LotRepository(session).audit_events(lot_id, event_type)]
