"""
HTTP surface of the Load Hunter core, served in-process over ASGI.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.api import deps
from loadhunter.core.db import get_db
from loadhunter.main import app
from loadhunter.utils.clock import utcnow

DANA = {"X-Dispatcher-Email": "dana@fleet.example", "X-Dispatcher-Name": "Dana Reyes", "X-Dispatcher-Id": "disp-1"}
SAM = {"X-Dispatcher-Email": "sam@fleet.example", "X-Dispatcher-Name": "Sam Ortiz"}


@pytest_asyncio.fixture
async def client(session_factory, seeded, mail, events):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_mail_sender] = lambda: mail
    app.dependency_overrides[deps.get_event_dispatcher] = lambda: events
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


def action(kind, **fields):
    return {"intent": {"kind": kind, **fields}}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_get_match(client):
    response = await client.get("/api/load-hunter/matches/match-1")

    assert response.status_code == 200
    assert response.json()["status"] == "active"


@pytest.mark.asyncio
async def test_unknown_match_is_404(client):
    response = await client.post("/api/load-hunter/matches/nope/actions", json=action("skip"), headers=DANA)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_actions_require_dispatcher_identity(client):
    response = await client.post("/api/load-hunter/matches/match-1/actions", json=action("skip"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_skip_then_history(client):
    response = await client.post("/api/load-hunter/matches/match-1/actions", json=action("skip"), headers=DANA)

    assert response.status_code == 200
    body = response.json()
    assert body["previous_status"] == "active"
    assert body["match"]["status"] == "skipped"

    history = await client.get("/api/load-hunter/matches/match-1/history")
    assert [entry["action_type"] for entry in history.json()] == ["skipped"]
    assert history.json()[0]["dispatcher_email"] == "dana@fleet.example"


@pytest.mark.asyncio
async def test_unknown_intent_kind_is_rejected(client):
    response = await client.post("/api/load-hunter/matches/match-1/actions", json=action("cancel"), headers=DANA)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_invalid_bid_amount_is_422(client, mail):
    response = await client.post(
        "/api/load-hunter/matches/match-1/actions",
        json=action("bid", amount=0, recipient="ops@broker.example"),
        headers=DANA,
    )

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "amount"
    assert mail.sent == []


@pytest.mark.asyncio
async def test_stale_restore_is_409(client):
    # Seeded matches are far older than the restoration window
    await client.post("/api/load-hunter/matches/match-1/actions", json=action("wait"), headers=DANA)

    response = await client.post("/api/load-hunter/matches/match-1/actions", json=action("mark_unreviewed"), headers=SAM)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_bid_flow_and_warning(client, mail):
    assert (await client.get("/api/load-hunter/loads/load-x/bid-warning")).json() is None

    first = await client.post(
        "/api/load-hunter/matches/match-1/actions",
        json=action("bid", amount=1400, recipient="ops@broker.example"),
        headers=DANA,
    )
    second = await client.post(
        "/api/load-hunter/matches/match-2/actions",
        json=action("bid", amount=1350, recipient="ops@broker.example"),
        headers=SAM,
    )

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["bid"]["amount"] == 1350
    assert len(mail.sent) == 1

    warning = (await client.get("/api/load-hunter/loads/load-x/bid-warning")).json()
    assert warning["bidder_name"] == "Dana Reyes"
    assert warning["vehicle_number"] == "104"

    bids = (await client.get("/api/load-hunter/loads/load-x/bids")).json()
    assert [b["status"] for b in bids] == ["sent", "duplicate"]

    metrics = (await client.get("/api/load-hunter/dispatchers/metrics")).json()
    assert metrics["total_bids"] == 2


@pytest.mark.asyncio
async def test_mail_outage_is_503(client, mail):
    mail.fail_with = "connection refused"

    response = await client.post(
        "/api/load-hunter/matches/match-1/actions",
        json=action("bid", amount=1400, recipient="ops@broker.example"),
        headers=DANA,
    )

    assert response.status_code == 503
    assert response.json()["detail"]["retryable"] is True


@pytest.mark.asyncio
async def test_record_view(client):
    response = await client.post("/api/load-hunter/matches/match-1/view", headers=DANA)

    assert response.status_code == 201
    assert response.json()["action_type"] == "viewed"


@pytest.mark.asyncio
async def test_lane_average(client):
    response = await client.get("/api/load-hunter/loads/load-x/lane-average")
    assert response.status_code == 200
    assert response.json() is None

    missing = await client.get("/api/load-hunter/loads/nope/lane-average")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_metrics_since_filter(client):
    await client.post("/api/load-hunter/matches/match-1/view", headers=DANA)

    since = (utcnow() + timedelta(minutes=5)).isoformat()
    metrics = (await client.get("/api/load-hunter/dispatchers/metrics", params={"since": since})).json()

    assert metrics["total_actions"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path",
    [
        "/api/load-hunter/matches/match-1/history",
        "/api/load-hunter/loads/load-x/bids",
        "/api/load-hunter/loads/load-x/lane-average",
        "/api/load-hunter/dispatchers/metrics",
    ],
)
async def test_store_outage_on_reads_is_503(client, monkeypatch, path):
    down = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
    monkeypatch.setattr(AsyncSession, "execute", down)
    monkeypatch.setattr(AsyncSession, "get", down)

    response = await client.get(path)

    assert response.status_code == 503
