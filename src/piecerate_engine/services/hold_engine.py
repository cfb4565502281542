"""Payment hold engine facade.

This facade is the only supported way to change holds and earnings.
Every public operation returns an OperationResult; no engine error is
raised across this boundary.

Usage:
    engine = PaymentHoldEngine(session_factory, config=EngineConfig())

    result = await engine.report_damage(BundleDamageReport(...))
    hold_id = result.unwrap()

    await engine.assign_rework(hold_id, ReworkRequest(...))
    await engine.complete_rework(hold_id, ReworkCompletion(...))

    unsubscribe = engine.subscribe_to_held_bundles(on_change)

The facade:
- Runs each transition as one transaction: read, validate, write
- Serializes writers per bundle/operator pair inside the process
- Relies on the hold version column to reject stale writers elsewhere
- Retries conflicts and store outages with backoff, bounded by a timeout
- Publishes change events and notifications only after commit
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Generic, TypeVar
from uuid import UUID, uuid4
from weakref import WeakValueDictionary

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from piecerate_engine.calculators import (
    BundleInfo,
    CompletionInfo,
    DamageReport,
    FaultClassifier,
    PaymentCalculator,
    PaymentResult,
)
from piecerate_engine.errors import (
    ConcurrencyConflict,
    PieceRateError,
    StoreUnavailable,
    ValidationError,
)
from piecerate_engine.events import HoldChanged, HoldChangeFeed, HoldChangeKind, Unsubscribe
from piecerate_engine.events.feed import HoldCallback
from piecerate_engine.models import BundlePaymentHold, utcnow
from piecerate_engine.policy import EngineConfig
from piecerate_engine.services.collaborators import Notification, NotificationSink, RateLookup
from piecerate_engine.services.earnings_ledger import EarningsLedger
from piecerate_engine.services.hold_store import HoldStore
from piecerate_engine.services.results import ErrorKind, OperationError, OperationResult
from piecerate_engine.services.rework_coordinator import ReworkCoordinator
from piecerate_engine.services.state_machine import HoldStateMachine, HoldStatus
from piecerate_engine.services.types import (
    BundleDamageReport,
    CompleteReworkOutcome,
    EarningsSummary,
    EarningsView,
    ForceReleaseOutcome,
    HoldView,
    PendingWork,
    ReworkCompletion,
    ReworkRequest,
    ReworkView,
    WorkCompletion,
    WorkItemView,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

RELEASE_REASON = "Bundle work completed including rework"
SYSTEM_ACTOR = "system"


def bundle_lock_key(bundle_number: str, operator_id: str) -> str:
    return f"bundle:{bundle_number}:{operator_id}"


def translate_store_error(exc: BaseException) -> PieceRateError | None:
    """Map a persistence failure onto the engine's error kinds.

    Returns None for exceptions that are not store failures.
    """
    if isinstance(exc, PieceRateError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(
            "Hold was changed by another writer",
            {"cause": "stale_version"},
        )
    if isinstance(exc, IntegrityError):
        # Unique round, transition or release rows written twice
        return ConcurrencyConflict(
            "Conflicting concurrent write",
            {"cause": "integrity"},
        )
    if isinstance(exc, asyncio.TimeoutError):
        return StoreUnavailable("Store call timed out")
    if isinstance(exc, (OperationalError, InterfaceError, OSError)):
        return StoreUnavailable(
            f"Store unavailable: {type(exc).__name__}",
            {"cause": str(exc)},
        )
    return None


@dataclass
class UnitOfWork:
    """Services bound to one session, plus effects to run after commit."""

    session: AsyncSession
    holds: HoldStore
    ledger: EarningsLedger
    rework: ReworkCoordinator
    events: list[HoldChanged] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


@dataclass
class _Committed(Generic[T]):
    result: T
    uow: UnitOfWork


class PaymentHoldEngine:
    """Holds, splits and releases piece-rate earnings around damage and rework."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: EngineConfig | None = None,
        clock: Clock = utcnow,
        id_factory: Callable[[], UUID] = uuid4,
        rate_lookup: RateLookup | None = None,
        notifier: NotificationSink | None = None,
        feed: HoldChangeFeed | None = None,
    ):
        self.session_factory = session_factory
        self.config = config or EngineConfig()
        self.clock = clock
        self.id_factory = id_factory
        self.rate_lookup = rate_lookup
        self.notifier = notifier
        self.feed = feed or HoldChangeFeed()
        self.classifier = FaultClassifier(self.config.fault)
        self.calculator = PaymentCalculator(self.classifier, self.config.calculator)
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    # ========================================================================
    # Hold transitions
    # ========================================================================

    async def report_damage(self, report: BundleDamageReport) -> OperationResult[UUID]:
        """Create a hold and park the bundle's earnings under it."""
        return await self._guard("report damage", self._report_damage(report))

    async def _report_damage(self, report: BundleDamageReport) -> UUID:
        report.validate()
        severity = self.classifier.normalize_severity(report.severity)

        async def work(uow: UnitOfWork) -> UUID:
            now = self.clock()
            hold = await uow.holds.add(report, severity, now)
            held = await uow.ledger.hold_for(
                report.bundle_number, report.operator_id, hold.hold_id, now
            )
            await self._record(uow, hold, None, HoldChangeKind.CREATED, report.operator_id, None, now)
            uow.notifications.append(
                Notification(
                    event="damage_reported",
                    recipient_role="supervisor",
                    title=f"Damage reported on bundle {hold.bundle_number}",
                    message=(
                        f"{hold.damage_count} of {hold.total_pieces} pieces reported "
                        f"damaged ({hold.damage_type}); payment held"
                    ),
                    data={"hold_id": str(hold.hold_id), "operator_id": hold.operator_id},
                )
            )
            logger.info(
                "Hold %s created for bundle %s operator %s (%d earnings held)",
                hold.hold_id,
                hold.bundle_number,
                hold.operator_id,
                held,
            )
            return hold.hold_id

        key = bundle_lock_key(report.bundle_number, report.operator_id)
        return await self._execute(key, work)

    async def assign_rework(
        self, hold_id: UUID, request: ReworkRequest
    ) -> OperationResult[ReworkView]:
        """Append a rework round and assign it to an operator."""
        return await self._guard("assign rework", self._assign_rework(hold_id, request))

    async def _assign_rework(self, hold_id: UUID, request: ReworkRequest) -> ReworkView:
        request.validate()

        async def work(uow: UnitOfWork) -> ReworkView:
            now = self.clock()
            hold = await uow.holds.require(hold_id)
            HoldStateMachine.validate_transition(
                hold.status, HoldStatus.REWORK_ASSIGNED, "assign rework"
            )
            rework_round = await uow.rework.assign(hold, request, now)
            from_status = HoldStateMachine.apply(
                hold, HoldStatus.REWORK_ASSIGNED, "assign rework", now
            )
            hold.rework_assigned_at = now
            await self._record(
                uow, hold, from_status, HoldChangeKind.REWORK_ASSIGNED,
                request.supervisor_id, request.rework_instructions, now,
            )
            uow.notifications.append(
                Notification(
                    event="rework_assigned",
                    recipient_role="operator",
                    title=f"Rework assigned for bundle {hold.bundle_number}",
                    message=f"{request.replacement_pieces} pieces to rework",
                    data={"hold_id": str(hold.hold_id), "operator_id": request.assigned_to},
                )
            )
            logger.info(
                "Rework round %d assigned on hold %s to %s",
                rework_round.round_number,
                hold.hold_id,
                request.assigned_to,
            )
            return ReworkView.from_model(rework_round)

        return await self._execute(await self._hold_lock_key(hold_id), work)

    async def complete_rework(
        self, hold_id: UUID, completion: ReworkCompletion
    ) -> OperationResult[CompleteReworkOutcome]:
        """Complete the latest rework round and release payment if the bundle is whole.

        On a hold that is already terminal this is a no-op returning the
        terminal state, so retried completions never release twice. A retry
        of a partial completion that already committed returns the same
        outcome with already_completed set.
        """
        return await self._guard(
            "complete rework", self._complete_rework(hold_id, completion)
        )

    async def _complete_rework(
        self, hold_id: UUID, completion: ReworkCompletion
    ) -> CompleteReworkOutcome:
        completion.validate()

        async def work(uow: UnitOfWork) -> CompleteReworkOutcome:
            now = self.clock()
            hold = await uow.holds.require(hold_id)
            if HoldStateMachine.is_terminal(hold.status):
                return CompleteReworkOutcome(
                    hold_id=hold.hold_id,
                    payment_released=not hold.payment_held,
                    status=hold.status,
                    completed_pieces=hold.completed_pieces + hold.reworked_pieces,
                    total_complete=hold.completed_pieces + hold.reworked_pieces >= hold.total_pieces,
                    already_terminal=True,
                )
            if uow.rework.repeats_last_completion(hold, completion):
                completed = hold.completed_pieces + hold.reworked_pieces
                return CompleteReworkOutcome(
                    hold_id=hold.hold_id,
                    payment_released=False,
                    status=hold.status,
                    completed_pieces=completed,
                    total_complete=completed >= hold.total_pieces,
                    already_completed=True,
                )

            await uow.rework.complete(hold, completion, now)
            completed = hold.completed_pieces + hold.reworked_pieces
            total_complete = completed >= hold.total_pieces
            hold.rework_completed_at = now

            if total_complete:
                from_status = HoldStateMachine.apply(
                    hold, HoldStatus.PAYMENT_RELEASED, "complete rework", now
                )
                hold.payment_released_at = now
                successor = await uow.holds.find_active_for_bundle(
                    hold.bundle_number, hold.operator_id, exclude=hold.hold_id
                )
                outcome = await uow.ledger.release_for(
                    hold, "completed", SYSTEM_ACTOR, RELEASE_REASON, now, successor
                )
                kind = HoldChangeKind.PAYMENT_RELEASED
                uow.notifications.append(
                    Notification(
                        event="payment_released",
                        recipient_role="operator",
                        title=f"Payment released for bundle {hold.bundle_number}",
                        message=f"{outcome.amount_released} released",
                        data={"hold_id": str(hold.hold_id), "operator_id": hold.operator_id},
                    )
                )
            else:
                from_status = HoldStateMachine.apply(
                    hold, HoldStatus.REWORK_COMPLETED, "complete rework", now
                )
                kind = HoldChangeKind.REWORK_COMPLETED

            await self._record(
                uow, hold, from_status, kind, completion.operator_id, completion.quality_notes, now
            )
            logger.info(
                "Rework completed on hold %s: %d/%d pieces, payment %s",
                hold.hold_id,
                completed,
                hold.total_pieces,
                "released" if total_complete else "still held",
            )
            return CompleteReworkOutcome(
                hold_id=hold.hold_id,
                payment_released=total_complete,
                status=hold.status,
                completed_pieces=completed,
                total_complete=total_complete,
            )

        return await self._execute(await self._hold_lock_key(hold_id), work)

    async def force_release_payment(
        self, hold_id: UUID, supervisor_id: str, reason: str
    ) -> OperationResult[ForceReleaseOutcome]:
        """Supervisor override: release payment without waiting for rework."""
        return await self._guard(
            "force release",
            self._force_release_payment(hold_id, supervisor_id, reason),
            count=lambda outcome: outcome.released_count,
        )

    async def _force_release_payment(
        self, hold_id: UUID, supervisor_id: str, reason: str
    ) -> ForceReleaseOutcome:
        if not supervisor_id or not supervisor_id.strip():
            raise ValidationError("supervisor_id is required", field="supervisor_id")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to force release", field="reason")

        async def work(uow: UnitOfWork) -> ForceReleaseOutcome:
            now = self.clock()
            hold = await uow.holds.require(hold_id)
            if hold.status == HoldStatus.FORCE_RELEASED.value:
                return ForceReleaseOutcome(
                    hold_id=hold.hold_id,
                    status=hold.status,
                    released_count=0,
                    amount_released=Decimal("0"),
                    already_released=True,
                )

            from_status = HoldStateMachine.apply(
                hold, HoldStatus.FORCE_RELEASED, "force release", now
            )
            hold.force_released_by = supervisor_id
            hold.force_release_reason = reason
            hold.force_released_at = now
            hold.payment_released_at = now
            cancelled = await uow.rework.cancel_open(hold, now)
            successor = await uow.holds.find_active_for_bundle(
                hold.bundle_number, hold.operator_id, exclude=hold.hold_id
            )
            outcome = await uow.ledger.release_for(
                hold, "forced", supervisor_id, reason, now, successor
            )
            await self._record(
                uow, hold, from_status, HoldChangeKind.FORCE_RELEASED, supervisor_id, reason, now
            )
            uow.notifications.append(
                Notification(
                    event="payment_force_released",
                    recipient_role="operator",
                    title=f"Payment released for bundle {hold.bundle_number}",
                    message=f"Released by supervisor: {reason}",
                    data={"hold_id": str(hold.hold_id), "operator_id": hold.operator_id},
                )
            )
            logger.warning(
                "Hold %s force released by %s (%d earnings released, %d rework cancelled): %s",
                hold.hold_id,
                supervisor_id,
                outcome.released_count,
                cancelled,
                reason,
            )
            return ForceReleaseOutcome(
                hold_id=hold.hold_id,
                status=hold.status,
                released_count=outcome.released_count,
                amount_released=outcome.amount_released,
            )

        return await self._execute(await self._hold_lock_key(hold_id), work)

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_hold(self, hold_id: UUID) -> OperationResult[HoldView]:
        async def work(uow: UnitOfWork) -> HoldView:
            return HoldView.from_model(await uow.holds.require(hold_id, for_update=False))

        return await self._guard("get hold", self._read(work))

    async def get_held_bundles(self) -> OperationResult[list[HoldView]]:
        """Holds still withholding payment, newest first."""

        async def work(uow: UnitOfWork) -> list[HoldView]:
            return [HoldView.from_model(h) for h in await uow.holds.list_held()]

        return await self._guard("get held bundles", self._read(work))

    async def get_operator_pending_work(self, operator_id: str) -> OperationResult[PendingWork]:
        """An operator's held bundles and assigned work."""

        async def work(uow: UnitOfWork) -> PendingWork:
            holds = await uow.holds.list_held_for_operator(operator_id)
            assignments = await uow.rework.list_open_work(operator_id)
            return PendingWork(
                held_bundles=[HoldView.from_model(h) for h in holds],
                regular_work=[WorkItemView.from_model(w) for w in assignments],
            )

        return await self._guard("get operator pending work", self._read(work))

    def subscribe_to_held_bundles(self, callback: HoldCallback) -> Unsubscribe:
        """Receive every committed hold change; call the result to stop."""
        return self.feed.subscribe(callback)

    # ========================================================================
    # Earnings
    # ========================================================================

    async def record_earnings(self, work_completion: WorkCompletion) -> OperationResult[EarningsView]:
        """Record earnings for a completed operation.

        Held immediately when the bundle already has an active hold.
        """
        return await self._guard("record earnings", self._record_earnings(work_completion))

    async def _record_earnings(self, work_completion: WorkCompletion) -> EarningsView:
        work_completion.validate()

        async def work(uow: UnitOfWork) -> EarningsView:
            now = self.clock()
            active = await uow.holds.find_active_for_bundle(
                work_completion.bundle_number, work_completion.operator_id
            )
            record = await uow.ledger.record_earnings(work_completion, now, active_hold=active)
            return EarningsView.from_model(record)

        key = bundle_lock_key(work_completion.bundle_number, work_completion.operator_id)
        return await self._execute(key, work)

    async def confirm_earnings(
        self, earnings_ids: list[UUID], confirmed_by: str
    ) -> OperationResult[list[EarningsView]]:
        """Confirm pending earnings. All or nothing."""

        async def work(uow: UnitOfWork) -> list[EarningsView]:
            records = await uow.ledger.confirm_earnings(earnings_ids, confirmed_by, self.clock())
            return [EarningsView.from_model(r) for r in records]

        return await self._guard("confirm earnings", self._run_unlocked(work), count=len)

    async def mark_earnings_paid(
        self,
        earnings_ids: list[UUID],
        paid_by: str,
        payment_reference: str | None = None,
    ) -> OperationResult[list[EarningsView]]:
        """Mark confirmed earnings paid. All or nothing."""

        async def work(uow: UnitOfWork) -> list[EarningsView]:
            records = await uow.ledger.mark_as_paid(
                earnings_ids, paid_by, payment_reference, self.clock()
            )
            return [EarningsView.from_model(r) for r in records]

        return await self._guard("mark earnings paid", self._run_unlocked(work), count=len)

    async def hold_earnings(
        self, earnings_id: UUID, reason: str, held_by: str
    ) -> OperationResult[EarningsView]:
        """Hold one earnings record without a bundle hold, e.g. pending a dispute."""

        async def work(uow: UnitOfWork) -> EarningsView:
            record = await uow.ledger.hold_earnings(earnings_id, reason, held_by, self.clock())
            return EarningsView.from_model(record)

        return await self._guard("hold earnings", self._run_unlocked(work))

    async def release_earnings_hold(
        self, earnings_id: UUID, released_by: str
    ) -> OperationResult[EarningsView]:
        """Release a record held by hold_earnings; it becomes confirmed."""

        async def work(uow: UnitOfWork) -> EarningsView:
            record = await uow.ledger.release_earnings_hold(earnings_id, released_by, self.clock())
            return EarningsView.from_model(record)

        return await self._guard("release earnings hold", self._run_unlocked(work))

    async def get_operator_earnings_summary(
        self,
        operator_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> OperationResult[EarningsSummary]:
        async def work(uow: UnitOfWork) -> EarningsSummary:
            return await uow.ledger.get_operator_summary(operator_id, start, end)

        return await self._guard("get operator earnings summary", self._read(work))

    async def get_all_operators_summary(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> OperationResult[list[EarningsSummary]]:
        async def work(uow: UnitOfWork) -> list[EarningsSummary]:
            return await uow.ledger.get_all_operators_summary(start, end)

        return await self._guard("get all operators summary", self._read(work))

    async def calculate_bundle_payment(
        self,
        bundle: BundleInfo,
        completion: CompletionInfo,
        damage_reports: list[DamageReport],
    ) -> OperationResult[PaymentResult]:
        """Damage-aware payment breakdown for a bundle. Pure; touches no store."""

        async def calculate() -> PaymentResult:
            if completion.completed_pieces < 0 or completion.completed_pieces > bundle.total_pieces:
                raise ValidationError(
                    "completed_pieces must be between 0 and total_pieces",
                    field="completed_pieces",
                )
            return self.calculator.calculate_bundle_payment(bundle, completion, damage_reports)

        return await self._guard("calculate bundle payment", calculate())

    # ========================================================================
    # Internals
    # ========================================================================

    async def _guard(
        self,
        action: str,
        call: Awaitable[T],
        count: Callable[[T], int] | None = None,
    ) -> OperationResult[T]:
        """Await an operation and wrap its outcome in an OperationResult."""
        try:
            data = await call
        except PieceRateError as exc:
            if exc.retryable:
                logger.warning("%s failed after retries: %s", action, exc.message)
            else:
                logger.info("%s rejected: %s", action, exc.message)
            return OperationResult.fail(OperationError.from_exception(exc), affected_count=0 if count else None)
        except Exception:
            logger.exception("Unexpected error during %s", action)
            return OperationResult.fail(
                OperationError(kind=ErrorKind.INTERNAL, message=f"Unexpected error during {action}"),
                affected_count=0 if count else None,
            )
        return OperationResult.ok(data, affected_count=count(data) if count else None)

    def _unit_of_work(self, session: AsyncSession) -> UnitOfWork:
        return UnitOfWork(
            session=session,
            holds=HoldStore(session, self.id_factory),
            ledger=EarningsLedger(session, self.calculator, self.rate_lookup, self.id_factory),
            rework=ReworkCoordinator(session, self.id_factory, self.config.rework_due_hours),
        )

    async def _transaction(
        self, work: Callable[[UnitOfWork], Awaitable[T]]
    ) -> _Committed[T]:
        """Run work in one transaction. Closing the session rolls back on error."""
        try:
            async with self.session_factory() as session:
                uow = self._unit_of_work(session)
                result = await work(uow)
                await session.commit()
        except PieceRateError:
            raise
        except Exception as exc:
            translated = translate_store_error(exc)
            if translated is None:
                raise
            raise translated from exc
        return _Committed(result, uow)

    async def _run(self, work: Callable[[UnitOfWork], Awaitable[T]]) -> _Committed[T]:
        """Run a transaction with a timeout, retrying retryable failures."""
        retry = self.config.retry
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    self._transaction(work), timeout=retry.store_timeout_seconds
                )
            except (ConcurrencyConflict, StoreUnavailable) as exc:
                error: PieceRateError = exc
            except asyncio.TimeoutError:
                error = StoreUnavailable(
                    f"Store call exceeded {retry.store_timeout_seconds}s",
                    {"timeout_seconds": retry.store_timeout_seconds},
                )

            if attempt >= retry.max_retries:
                raise error
            delay = retry.delay_for(attempt)
            logger.warning(
                "%s (attempt %d of %d), retrying in %.2fs",
                error.message,
                attempt + 1,
                retry.max_retries + 1,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def _read(self, work: Callable[[UnitOfWork], Awaitable[T]]) -> T:
        return (await self._run(work)).result

    async def _run_unlocked(self, work: Callable[[UnitOfWork], Awaitable[T]]) -> T:
        committed = await self._run(work)
        await self._after_commit(committed.uow)
        return committed.result

    async def _execute(self, key: str, work: Callable[[UnitOfWork], Awaitable[T]]) -> T:
        """Run a write under the per-pair lock; publish effects before unlocking."""
        async with self._lock_for(key):
            committed = await self._run(work)
            await self._after_commit(committed.uow)
            return committed.result

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _hold_lock_key(self, hold_id: UUID) -> str:
        """Lock key of a hold's bundle/operator pair.

        Bundle number and operator never change after a hold is created,
        so reading them outside the write transaction is safe.
        """

        async def work(uow: UnitOfWork) -> str:
            hold = await uow.holds.require(hold_id, for_update=False)
            return bundle_lock_key(hold.bundle_number, hold.operator_id)

        return await self._read(work)

    async def _record(
        self,
        uow: UnitOfWork,
        hold: BundlePaymentHold,
        from_status: str | None,
        kind: HoldChangeKind,
        actor_id: str | None,
        reason: str | None,
        now: datetime,
    ) -> None:
        """Log the transition and queue its change event."""
        await uow.holds.record_transition(hold, from_status, actor_id, reason, now)
        uow.events.append(
            HoldChanged(
                kind=kind,
                hold=HoldView.from_model(hold),
                sequence=hold.version,
                from_status=from_status,
                occurred_at=now,
                actor_id=actor_id,
            )
        )

    async def _after_commit(self, uow: UnitOfWork) -> None:
        """Publish events, then send notifications. Neither can undo the commit."""
        if uow.events:
            await self.feed.publish_all(uow.events)
        for notification in uow.notifications:
            await self._notify(notification)

    async def _notify(self, notification: Notification) -> None:
        if self.notifier is None:
            return
        try:
            await asyncio.wait_for(
                self.notifier.notify(notification),
                timeout=self.config.retry.store_timeout_seconds,
            )
        except Exception:
            logger.exception(
                "Notification %s failed; payment state is unaffected",
                notification.event,
            )
