import os
from datetime import datetime, timedelta
from typing import Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from loadhunter.models import Load, LoadHuntMatch, MatchStatus, Vehicle
from loadhunter.models.base import Base
from loadhunter.schemas.load_hunter import Dispatcher
from loadhunter.services.action_history import ActionHistoryService
from loadhunter.services.bid_coordinator import BidCoordinator
from loadhunter.services.event_dispatcher import EventDispatcher
from loadhunter.services.mail import MailResult
from loadhunter.services.match_state import MatchStateMachine
from loadhunter.services.restoration import RestorationPolicy

T0 = datetime(2026, 3, 2, 14, 0, 0)

ATLANTA = (33.75, -84.39)
MEMPHIS = (35.15, -90.05)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMailSender:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Optional[str] = None
        self.raise_error: Optional[Exception] = None

    async def send(
        self, recipient: str, cc: Optional[str], subject: str, body: str, reply_to: Optional[str] = None
    ) -> MailResult:
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return MailResult(False, self.fail_with)
        self.sent.append({"recipient": recipient, "cc": cc, "subject": subject, "body": body, "reply_to": reply_to})
        return MailResult(True, "queued", message_id=f"<bid-{len(self.sent)}@test>")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mail():
    return FakeMailSender()


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def dispatcher_one():
    return Dispatcher(id="disp-1", email="dana@fleet.example", name="Dana Reyes")


@pytest.fixture
def dispatcher_two():
    return Dispatcher(id="disp-2", email="sam@fleet.example", name="Sam Ortiz")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'loadhunter.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory, clock):
    """Load X (Atlanta to Memphis) with two candidate trucks."""
    async with session_factory() as session:
        session.add_all(
            [
                Load(
                    id="load-x",
                    source="loadboard",
                    customer="Peachtree Logistics",
                    origin_city="Atlanta",
                    origin_state="GA",
                    origin_lat=ATLANTA[0],
                    origin_lng=ATLANTA[1],
                    destination_city="Memphis",
                    destination_state="TN",
                    destination_lat=MEMPHIS[0],
                    destination_lng=MEMPHIS[1],
                    posted_rate=1500,
                    equipment_type="Large Straight",
                    created_at=clock(),
                ),
                Vehicle(
                    id="veh-1",
                    vehicle_number="104",
                    asset_type="Large Straight",
                    carrier="Blue Line Freight",
                    created_at=clock(),
                ),
                Vehicle(
                    id="veh-2",
                    vehicle_number="212",
                    asset_type="Sprinter",
                    carrier="Blue Line Freight",
                    bid_as="Blue Line Expedite",
                    created_at=clock(),
                ),
            ]
        )
        await session.commit()
        session.add_all(
            [
                make_match("match-1", "load-x", "veh-1", clock()),
                make_match("match-2", "load-x", "veh-2", clock()),
            ]
        )
        await session.commit()
    return {"load_id": "load-x", "match_ids": ["match-1", "match-2"]}


def make_match(match_id: str, load_id: str, vehicle_id: str, matched_at: datetime, status: str = MatchStatus.ACTIVE.value) -> LoadHuntMatch:
    return LoadHuntMatch(
        id=match_id,
        load_id=load_id,
        vehicle_id=vehicle_id,
        distance_miles=22.5,
        matched_at=matched_at,
        status=status,
        is_active=status == MatchStatus.ACTIVE.value,
        updated_at=matched_at,
    )


@pytest.fixture
def build_machine(mail, events, clock):
    """Wire a state machine and its bid coordinator onto a session."""

    def _build(session, mode: str = "optimistic") -> MatchStateMachine:
        history = ActionHistoryService(session, clock=clock)
        bids = BidCoordinator(session, mail, history, events, mode=mode, clock=clock)
        return MatchStateMachine(
            session,
            history,
            bids,
            events,
            restoration=RestorationPolicy(window=timedelta(minutes=40)),
            clock=clock,
        )

    return _build
