"""Test configuration."""
import os
import re
from collections import defaultdict
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

# --- Default env config
os.environ.setdefault("DATABASE_URL", "sqlite:///./paysync_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("PAYSYNC_ENV", "test")
os.environ.setdefault("BACKEND_API_BASE_URL", "http://backend.test")
os.environ.setdefault("BACKEND_API_TOKEN", "backend-token")

from paysync.config import Settings  # noqa: E402
from paysync.main import app  # noqa: E402
from paysync.models import PendingPayment  # noqa: E402
from paysync.services.backend_client import BackendClient  # noqa: E402
from paysync.services.bid_cache import BidCache  # noqa: E402
from paysync.services.payment_bus import InProcessPaymentBus  # noqa: E402
from paysync.services.payment_sync import PaymentSyncService, get_payment_service  # noqa: E402
from paysync.services.pending_store import PendingKeyStore  # noqa: E402
from paysync.services.poller import PollerRegistry  # noqa: E402

DB_PATH = Path("./paysync_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Reset the DB file at session start
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Build the schema through Alembic only
_run_migrations()


class FakeBackend:
    """In-memory stand-in for the platform backend, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.bids: dict[int, dict[str, Any]] = {}
        # Per-bid queue of scripted answers: a dict (bid payload) or an int (error status).
        self.scripted: dict[int, list[Any]] = defaultdict(list)
        self.safe_txs: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.reconcile_status = 200
        self.pay_status = 200
        self.bid_reads: dict[int, int] = defaultdict(int)

    def set_milestone(self, bid_id: int, index: int, milestone: dict[str, Any]) -> None:
        bid = self.bids.setdefault(bid_id, {"bidId": bid_id, "proposalId": 1, "milestones": []})
        while len(bid["milestones"]) <= index:
            bid["milestones"].append({"name": f"M{len(bid['milestones']) + 1}"})
        bid["milestones"][index] = milestone

    def script(self, bid_id: int, *answers: Any) -> None:
        self.scripted[bid_id].extend(answers)

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/admin/oversight/reconcile-safe":
            if self.reconcile_status != 200:
                return httpx.Response(self.reconcile_status, json={"error": "reconcile failed"})
            return httpx.Response(200, json={"ok": True})

        match = re.fullmatch(r"/bids/(\d+)/pay-milestone", path)
        if request.method == "POST" and match:
            if self.pay_status != 200:
                return httpx.Response(self.pay_status, json={"error": "pay failed"})
            return httpx.Response(200, json={"ok": True, "queued": True})

        match = re.fullmatch(r"/bids/(\d+)", path)
        if request.method == "GET" and match:
            bid_id = int(match.group(1))
            self.bid_reads[bid_id] += 1
            if self.scripted[bid_id]:
                answer = self.scripted[bid_id].pop(0)
                if isinstance(answer, int):
                    return httpx.Response(answer, json={"error": f"status {answer}"})
                return httpx.Response(200, json=answer)
            bid = self.bids.get(bid_id)
            if bid is None:
                return httpx.Response(404, json={"error": "Bid not found"})
            return httpx.Response(200, json=bid)

        match = re.fullmatch(r"/safe/tx/(.+)", path)
        if request.method == "GET" and match:
            return httpx.Response(200, json=self.safe_txs.get(match.group(1), {"isExecuted": False}))

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        POLL_MAX_TRIES=5,
        POLL_INTERVAL_SECONDS=0,
        RECONCILE_SETTLE_SECONDS=0,
        PENDING_MAX_AGE_SECONDS=300,
        BID_CACHE_TTL_SECONDS=60,
        SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def backend_client(settings: Settings, backend: FakeBackend) -> AsyncIterator[BackendClient]:
    client = BackendClient(settings, transport=httpx.MockTransport(backend.handler))
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def session_factory() -> sessionmaker:
    return TestingSessionLocal


@pytest.fixture
def pending_store() -> Iterator[PendingKeyStore]:
    with TestingSessionLocal() as session, session.begin():
        session.execute(delete(PendingPayment))
    yield PendingKeyStore(TestingSessionLocal, max_age_seconds=300)


@pytest.fixture
async def payment_service(
    settings: Settings,
    backend_client: BackendClient,
    pending_store: PendingKeyStore,
) -> AsyncIterator[PaymentSyncService]:
    service = PaymentSyncService(
        settings=settings,
        client=backend_client,
        store=pending_store,
        bus=InProcessPaymentBus(),
        cache=BidCache(settings.BID_CACHE_TTL_SECONDS),
        registry=PollerRegistry(),
    )
    service.listen()
    try:
        yield service
    finally:
        await service.close()


@pytest.fixture
async def client(payment_service: PaymentSyncService) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as async_client:
            yield async_client
    finally:
        app.dependency_overrides.pop(get_payment_service, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}
