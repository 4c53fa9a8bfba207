"""
First-bid-wins coordination for a load.

Bid composition happens in many dispatcher sessions at once with no central
lock. The coordinator narrows the race instead of preventing it:

1. the bid view shows a warning banner when the load already has a ``sent`` bid
   and keeps it live through a ``load_bids:{load_id}`` subscription;
2. on send, the load is re-checked; the first bid is mailed and stored as
   ``sent``, later ones are stored as ``duplicate`` and never mailed;
3. a partial unique index on ``load_bid(load_id) WHERE status = 'sent'``
   catches whatever slips through the check-then-write window.

The dispatcher always sees success for a non-failing attempt. Only the stored
``LoadBid.status`` distinguishes the winner from duplicates.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Literal, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.core.errors import NetworkFailure, RaceConditionDetected
from loadhunter.models.load import Load
from loadhunter.models.match import ActionType, LoadBid, LoadBidStatus, LoadHuntMatch
from loadhunter.models.vehicle import Vehicle
from loadhunter.schemas.load_hunter import BidIntent, BidReceipt, BidWarning, Dispatcher, LoadBidRead
from loadhunter.services.action_history import ActionHistoryService
from loadhunter.services.event_dispatcher import (
    Event,
    EventDispatcher,
    EventType,
    Subscription,
    load_bids_topic,
)
from loadhunter.services.mail import MailSender
from loadhunter.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

CoordinationMode = Literal["optimistic", "transactional"]
WarningCallback = Callable[[Optional[BidWarning]], Any]
AcceptedHook = Callable[[LoadBid], Awaitable[None]]


@dataclass
class BidSubmission:
    receipt: BidReceipt
    load_bid: LoadBidRead


def compose_bid_email(
    load: Optional[Load],
    vehicle: Optional[Vehicle],
    amount: float,
    dispatcher: Dispatcher,
) -> Tuple[str, str]:
    """Default subject and plain-text body for a bid email."""
    origin = load.origin_label if load else "Unknown origin"
    destination = load.destination_label if load else "Unknown destination"
    subject = f"Bid: {origin} to {destination} - ${amount:,.2f}"

    lines = [
        "Hello,",
        "",
        f"We can cover your load from {origin} to {destination} for ${amount:,.2f}.",
    ]
    if vehicle is not None:
        truck = vehicle.asset_type or "truck"
        number = f" #{vehicle.vehicle_number}" if vehicle.vehicle_number else ""
        lines.append(f"Equipment: {truck}{number}")
        if vehicle.bid_carrier:
            lines.append(f"Carrier: {vehicle.bid_carrier}")
    lines += ["", "Thank you,", dispatcher.display_name, dispatcher.email]
    return subject, "\n".join(lines)


def _warning_from_bid(bid: LoadBid) -> BidWarning:
    vehicle = bid.vehicle
    return BidWarning(
        load_id=bid.load_id,
        bid_id=bid.id,
        bidder_name=bid.dispatcher_name,
        bidder_email=bid.dispatcher_email,
        amount=float(bid.bid_amount),
        vehicle_id=bid.vehicle_id,
        vehicle_number=vehicle.vehicle_number if vehicle is not None else None,
        sent_at=bid.created_at,
    )


def _warning_from_record(record: LoadBidRead) -> BidWarning:
    return BidWarning(
        load_id=record.load_id,
        bid_id=record.id,
        bidder_name=record.dispatcher_name,
        bidder_email=record.dispatcher_email,
        amount=record.bid_amount,
        vehicle_id=record.vehicle_id,
        sent_at=record.created_at,
    )


class BidCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        mail: MailSender,
        history: ActionHistoryService,
        dispatcher: EventDispatcher,
        mode: CoordinationMode = "optimistic",
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.mail = mail
        self.history = history
        self.events = dispatcher
        self.mode = mode
        self.clock = clock

    # ---------- Bid view ----------

    async def existing_bid(self, load_id: str) -> Optional[BidWarning]:
        """Warning banner for the load, or None when nobody has bid yet."""
        bid = await self._sent_bid(load_id)
        return _warning_from_bid(bid) if bid is not None else None

    def watch_load_bids(self, load_id: str, on_change: WarningCallback) -> Subscription:
        """Keep a bid view's banner live. Close the subscription when the view closes."""

        def _handle(event: Event) -> Any:
            warning = event.data.get("warning")
            return on_change(BidWarning(**warning) if warning else None)

        return self.events.subscribe(load_bids_topic(load_id), _handle)

    async def open_bid_view(
        self, load_id: str, on_change: WarningCallback
    ) -> Tuple[Optional[BidWarning], Subscription]:
        # Subscribe first so a bid landing between the two calls is not missed
        subscription = self.watch_load_bids(load_id, on_change)
        return await self.existing_bid(load_id), subscription

    async def list_bids(self, load_id: str) -> List[LoadBidRead]:
        try:
            result = await self.db.execute(
                select(LoadBid).where(LoadBid.load_id == load_id).order_by(LoadBid.created_at.asc())
            )
        except SQLAlchemyError as exc:
            raise NetworkFailure(f"Could not list bids for load {load_id}") from exc
        return [LoadBidRead.model_validate(bid) for bid in result.scalars().all()]

    # ---------- Sending ----------

    async def submit_bid(
        self,
        match: LoadHuntMatch,
        intent: BidIntent,
        dispatcher: Dispatcher,
        on_accepted: Optional[AcceptedHook] = None,
    ) -> BidSubmission:
        """Send (or record as duplicate) a bid for the match's load and commit.

        ``on_accepted`` stages the caller's own changes (the match transition)
        so they commit together with the LoadBid row and its audit entry.
        Intent validation is the caller's job.
        """
        match_id = match.id
        load_id = match.load_id

        prior = await self._sent_bid(load_id)
        if prior is not None:
            return await self._record_duplicate(match, intent, dispatcher, on_accepted, prior.id)

        subject, body = self._compose(match, intent, dispatcher)

        if self.mode == "transactional":
            bid = self._stage_bid(match, intent, dispatcher, LoadBidStatus.SENT)
            try:
                await self.db.flush()
            except IntegrityError:
                await self._rollback_and_refresh(match)
                return await self._record_duplicate(match, intent, dispatcher, on_accepted, None)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error("Failed to reserve bid", extra={"load_id": load_id, "match_id": match_id})
                raise NetworkFailure(f"Could not save bid for load {load_id}") from exc

            await self._send_or_raise(intent, subject, body, load_id, dispatcher.email)
            return await self._commit(bid, match, intent, dispatcher, on_accepted, message_sent=True)

        await self._send_or_raise(intent, subject, body, load_id, dispatcher.email)
        bid = self._stage_bid(match, intent, dispatcher, LoadBidStatus.SENT)
        try:
            return await self._commit(
                bid, match, intent, dispatcher, on_accepted, message_sent=True, conflict_is_race=True
            )
        except RaceConditionDetected:
            logger.warning(
                "Bid email went out but another sent bid won the load; storing as duplicate",
                extra={"load_id": load_id, "match_id": match_id},
            )
            await self._rollback_and_refresh(match)
            return await self._record_duplicate(match, intent, dispatcher, on_accepted, None)

    async def _record_duplicate(
        self,
        match: LoadHuntMatch,
        intent: BidIntent,
        dispatcher: Dispatcher,
        on_accepted: Optional[AcceptedHook],
        winning_bid_id: Optional[str],
    ) -> BidSubmission:
        race = RaceConditionDetected(match.load_id, winning_bid_id)
        logger.info(f"{race.message}; recording duplicate from {dispatcher.email}")
        bid = self._stage_bid(match, intent, dispatcher, LoadBidStatus.DUPLICATE)
        return await self._commit(bid, match, intent, dispatcher, on_accepted, message_sent=False)

    async def _commit(
        self,
        bid: LoadBid,
        match: LoadHuntMatch,
        intent: BidIntent,
        dispatcher: Dispatcher,
        on_accepted: Optional[AcceptedHook],
        message_sent: bool,
        conflict_is_race: bool = False,
    ) -> BidSubmission:
        load_id = bid.load_id
        match_id = match.id
        self.history.stage(
            match_id,
            dispatcher,
            ActionType.BID,
            {
                "bid_amount": intent.amount,
                "recipient": intent.recipient,
                "load_bid_id": bid.id,
                "load_bid_status": bid.status,
            },
        )

        try:
            if on_accepted is not None:
                await on_accepted(bid)
            await self.db.commit()
        except IntegrityError as exc:
            if conflict_is_race:
                # Caller rolls back and re-records the attempt as a duplicate
                raise RaceConditionDetected(load_id) from exc
            await self.db.rollback()
            raise NetworkFailure(f"Could not save bid for load {load_id}", message_sent=message_sent) from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            if message_sent:
                logger.error(
                    "Bid email was sent but the bid could not be saved",
                    extra={"load_id": load_id, "match_id": match_id},
                )
            raise NetworkFailure(f"Could not save bid for load {load_id}", message_sent=message_sent) from exc

        # Committed: nothing below may fail the attempt
        record = LoadBidRead.model_validate(bid)
        await self._publish(load_id, record)
        return BidSubmission(
            receipt=BidReceipt(
                load_id=load_id,
                match_id=match_id,
                amount=intent.amount,
                recipient=intent.recipient,
                submitted_at=record.created_at,
            ),
            load_bid=record,
        )

    async def _publish(self, load_id: str, record: LoadBidRead) -> None:
        try:
            warning = await self.existing_bid(load_id)
        except (NetworkFailure, SQLAlchemyError):
            logger.error(
                "Could not re-read the winning bid after commit",
                extra={"load_id": load_id, "load_bid_id": record.id},
                exc_info=True,
            )
            if record.status != LoadBidStatus.SENT.value:
                # The winner is unknown here; leave open views as they are
                return
            warning = _warning_from_record(record)

        await self.events.emit(
            Event(
                type=EventType.LOAD_BID_CREATED,
                key=load_bids_topic(load_id),
                data={
                    "load_bid": record.model_dump(mode="json"),
                    "warning": warning.model_dump(mode="json") if warning else None,
                },
            )
        )

    async def _send_or_raise(
        self, intent: BidIntent, subject: str, body: str, load_id: str, reply_to: Optional[str]
    ) -> None:
        try:
            result = await self.mail.send(intent.recipient, intent.cc, subject, body, reply_to=reply_to)
        except Exception as exc:
            logger.exception("Mail dispatch raised", extra={"load_id": load_id})
            await self._release_reservation()
            raise NetworkFailure(f"Bid email for load {load_id} could not be sent") from exc

        if not result.success:
            logger.error(f"Bid email for load {load_id} failed: {result.detail}")
            await self._release_reservation()
            raise NetworkFailure(f"Bid email for load {load_id} could not be sent: {result.detail}")
        logger.info(f"Bid email for load {load_id} sent to {intent.recipient} ({result.message_id})")

    async def _release_reservation(self) -> None:
        # Only the transactional mode has a flushed row waiting on the mail result
        if self.mode == "transactional" and self.db.in_transaction():
            await self.db.rollback()

    def _compose(self, match: LoadHuntMatch, intent: BidIntent, dispatcher: Dispatcher) -> Tuple[str, str]:
        subject, body = compose_bid_email(match.load, match.vehicle, intent.amount, dispatcher)
        return intent.subject or subject, intent.body or body

    def _stage_bid(
        self,
        match: LoadHuntMatch,
        intent: BidIntent,
        dispatcher: Dispatcher,
        status: LoadBidStatus,
    ) -> LoadBid:
        bid = LoadBid(
            id=str(uuid.uuid4()),
            load_id=match.load_id,
            match_id=match.id,
            vehicle_id=match.vehicle_id,
            dispatcher_id=dispatcher.id,
            dispatcher_email=dispatcher.email,
            dispatcher_name=dispatcher.display_name,
            bid_amount=intent.amount,
            to_email=intent.recipient,
            cc_email=intent.cc,
            status=status.value,
            created_at=self.clock(),
        )
        self.db.add(bid)
        return bid

    async def _sent_bid(self, load_id: str) -> Optional[LoadBid]:
        try:
            result = await self.db.execute(
                select(LoadBid)
                .where(LoadBid.load_id == load_id, LoadBid.status == LoadBidStatus.SENT.value)
                .order_by(LoadBid.created_at.asc())
                .limit(1)
            )
        except SQLAlchemyError as exc:
            raise NetworkFailure(f"Could not check existing bids for load {load_id}") from exc
        return result.unique().scalar_one_or_none()

    async def _rollback_and_refresh(self, match: LoadHuntMatch) -> None:
        await self.db.rollback()
        await self.db.refresh(match)
