"""
Logic for replicating recurring transactions and keeping their chains
consistent.

A recurring transaction is a *root*. For every later month a read touches,
``materialize`` inserts one *instance* copied from each active root and
pointing back to it through ``replicated_from_id``. Chains are two levels
deep: instances always reference the root, never another instance.

Editing or deleting a member of a chain rewrites the chain from that date
forward:

* editing an instance into a recurring record supersedes the old root and
  makes the edited record the new root;
* editing a root prunes its instances from the following month on;
* demoting any member to a one-off prunes the chain from the edited date;
* deleting a member prunes the chain from the following month and, for an
  instance, reactivates a superseded root.

Multi-step repairs run as a ``ChainRepair``: every mutation registers a
compensating action which is replayed in reverse if a later step fails.
"""
from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from .collection import Document, Filter, TransactionCollection
from .errors import FinplanError, NotFoundError, ValidationError
from .models import Instance, Transaction, TransactionType, parse_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REQUIRED_FIELDS = ("description", "value", "date", "type", "category")

# December of MAX_YEAR still has a following month inside datetime's range
MAX_YEAR = 9998


# --------- Helpers: dates ---------
# Months are 1-indexed everywhere in this module.

def _validate_month(year: int, month: int) -> None:
    if not 1 <= int(month) <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {month}")
    if not 1 <= int(year) <= MAX_YEAR:
        raise ValidationError(f"Invalid year: {year}")


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """First instant of the month and of the following month, in UTC."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    return start, start + relativedelta(months=1)


def first_of_next_month(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc)
    return datetime(moment.year, moment.month, 1, tzinfo=timezone.utc) + relativedelta(months=1)


def clamp_day(year: int, month: int, day: int) -> int:
    """The requested day, or the last day of the month if it is shorter."""
    return min(day, calendar.monthrange(year, month)[1])


def normalize_date(value: Any) -> datetime:
    """
    UTC midnight of the calendar day given as date, datetime or ISO 8601 text.

    Text and datetimes follow the same rule: an offset is converted to UTC
    before the day is taken, a naive value is already read as UTC.
    """
    if not isinstance(value, date):
        try:
            value = isoparse(str(value))
        except (ValueError, OverflowError):
            raise ValidationError(f"Invalid date: {value!r}") from None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            try:
                value = value.astimezone(timezone.utc)
            except OverflowError:
                raise ValidationError(f"Invalid date: {value.isoformat()}") from None
        day = value.date()
    else:
        day = value
    if day.year > MAX_YEAR:
        raise ValidationError(f"Dates after year {MAX_YEAR} are not supported: {day.isoformat()}")
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


# --------- Coordination ---------

class SingleFlight:
    """
    Runs at most one coroutine at a time. A caller arriving while a run is in
    flight awaits that run and receives its result; once it finishes, the
    next caller starts a fresh run. The check-and-start has no await in it,
    so it is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Future] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._task
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._task = task
            task.add_done_callback(self._release)
        else:
            logger.debug("Joining in-flight run")
        # A cancelled waiter must not cancel the run shared with others
        return await asyncio.shield(task)

    def _release(self, task: asyncio.Future) -> None:
        if self._task is task:
            self._task = None


# Process-wide: one materialization pass at a time, whatever the month.
materialize_flight = SingleFlight()


class ChainRepair:
    """Ordered record of chain mutations and the actions that undo them."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._compensations: List[Tuple[str, Callable[[], Awaitable[Any]]]] = []

    def on_failure(self, description: str, compensation: Callable[[], Awaitable[Any]]) -> None:
        self._compensations.append((description, compensation))

    async def rollback(self) -> None:
        while self._compensations:
            description, compensation = self._compensations.pop()
            try:
                await compensation()
            except Exception:
                logger.exception("[%s] compensation failed: %s", self.label, description)
            else:
                logger.warning("[%s] compensated: %s", self.label, description)


# --------- Engine ---------

class RecurrenceEngine:
    def __init__(
        self,
        collection: TransactionCollection,
        flight: Optional[SingleFlight] = None,
    ) -> None:
        self.collection = collection
        self.flight = flight if flight is not None else materialize_flight

    # --- materialize ---

    async def materialize(self, year: int, month: int) -> int:
        """
        Ensure every active root dated before the target month has one
        instance inside it. Returns the number of instances created; store
        failures are logged and reported as 0.
        """
        _validate_month(year, month)
        return await self.flight.run(lambda: self._materialize(int(year), int(month)))

    async def _materialize(self, year: int, month: int) -> int:
        try:
            target_start, target_end = month_bounds(year, month)

            roots = await self.collection.find({
                "date": {"$lt": target_start},
                "is_recurrent": True,
                "replicated_from_id": {"$exists": False},
                "is_superseded": {"$ne": True},
            })
            if not roots:
                return 0

            existing = await self.collection.find({
                "date": {"$gte": target_start, "$lt": target_end},
                "replicated_from_id": {"$exists": True},
            })
            satisfied = {doc["replicated_from_id"] for doc in existing}

            batch = [
                build_instance(Transaction.from_document(doc), year, month)
                for doc in roots
                if doc["id"] not in satisfied
            ]
            if batch:
                await self.collection.insert_many(batch)
                logger.info("Inserted %d recurring transactions for %02d/%d", len(batch), month, year)
            return len(batch)
        except Exception:
            logger.exception("Recurring replication failed for %02d/%d", month, year)
            return 0

    # --- edit ---

    async def reparent_on_edit(self, transaction_id: Any, fields: Mapping[str, Any]) -> Dict[str, int]:
        tx_id = parse_id(transaction_id)
        updated = prepare_fields(fields)

        doc = await self.collection.find_one({"id": tx_id})
        if doc is None:
            raise NotFoundError("Transaction not found")
        old = Transaction.from_document(doc)

        new_date: datetime = updated["date"]
        unset: List[str] = []
        repair = ChainRepair(f"edit {tx_id}")
        try:
            if updated["is_recurrent"]:
                role = old.role
                if isinstance(role, Instance):
                    # The edited instance becomes the root of future months
                    await self._supersede(repair, role.root_id)
                    pruned = await self._prune(repair, {
                        "replicated_from_id": role.root_id,
                        "date": {"$gt": new_date},
                        "id": {"$ne": tx_id},
                    })
                    logger.info("Edit %s: pruned %d later instances of old root %s", tx_id, pruned, role.root_id)
                    unset.append("replicated_from_id")
                elif old.is_recurrent:
                    pruned = await self._prune(repair, {
                        "replicated_from_id": old.id,
                        "date": {"$gte": first_of_next_month(new_date)},
                    })
                    logger.info("Edit %s: pruned %d future instances of root", tx_id, pruned)
            elif old.is_recurrent:
                root_id = old.chain_root_id
                pruned = await self._prune(repair, {
                    "replicated_from_id": root_id,
                    "date": {"$gte": new_date},
                    "id": {"$ne": tx_id},
                })
                logger.info("Edit %s: now one-off, pruned %d instances of root %s", tx_id, pruned, root_id)
                unset.extend(["replicated_from_id", "is_superseded"])

            result = await self.collection.update_one(
                {"id": tx_id},
                {"$set": updated, "$unset": unset},
            )
            if result.matched_count == 0:
                raise NotFoundError("Transaction not found after the initial lookup")
        except FinplanError:
            logger.exception("Edit of %s failed, rolling back chain repair", tx_id)
            await repair.rollback()
            raise

        return {"modifiedCount": result.modified_count}

    # --- delete ---

    async def unlink_on_delete(self, transaction_id: Any) -> Dict[str, int]:
        tx_id = parse_id(transaction_id)

        doc = await self.collection.find_one({"id": tx_id})
        if doc is None:
            raise NotFoundError("Transaction not found")
        tx = Transaction.from_document(doc)

        deleted_future = 0
        repair = ChainRepair(f"delete {tx_id}")
        try:
            if tx.is_recurrent:
                root_id = tx.chain_root_id
                boundary = first_of_next_month(tx.date)
                deleted_future = await self._prune(repair, {"$or": [
                    {"replicated_from_id": root_id, "date": {"$gte": boundary}},
                    {"id": root_id, "date": {"$gte": boundary}},
                ]})
                logger.info("Delete %s: pruned %d future records of root %s", tx_id, deleted_future, root_id)

                if isinstance(tx.role, Instance):
                    await self._reactivate(repair, root_id)

            deleted = await self.collection.delete_one({"id": tx_id})
            if deleted == 0:
                raise NotFoundError("Transaction not found during deletion")
        except FinplanError:
            logger.exception("Delete of %s failed, rolling back chain repair", tx_id)
            await repair.rollback()
            raise

        return {"deletedCount": deleted, "deletedFutureCount": deleted_future}

    # --- chain steps ---

    async def _supersede(self, repair: ChainRepair, root_id: str) -> None:
        root = await self.collection.find_one({"id": root_id})
        await self.collection.update_one({"id": root_id}, {"$set": {"is_superseded": True}})
        logger.info("Root %s superseded", root_id)
        if root is not None and not root.get("is_superseded"):
            repair.on_failure(
                f"restore root {root_id}",
                lambda: self.collection.update_one({"id": root_id}, {"$unset": ["is_superseded"]}),
            )

    async def _reactivate(self, repair: ChainRepair, root_id: str) -> None:
        root = await self.collection.find_one({"id": root_id})
        await self.collection.update_one({"id": root_id}, {"$unset": ["is_superseded"]})
        if root is not None and root.get("is_superseded"):
            logger.info("Root %s reactivated", root_id)
            repair.on_failure(
                f"supersede root {root_id} again",
                lambda: self.collection.update_one({"id": root_id}, {"$set": {"is_superseded": True}}),
            )

    async def _prune(self, repair: ChainRepair, query: Filter) -> int:
        doomed = await self.collection.find(query)
        if not doomed:
            return 0
        # Only the records found above; anything inserted since is left alone
        deleted = await self.collection.delete_many({"id": {"$in": [doc["id"] for doc in doomed]}})
        repair.on_failure(
            f"re-insert {len(doomed)} pruned records",
            lambda: self.collection.insert_many(doomed),
        )
        return deleted


def build_instance(root: Transaction, year: int, month: int) -> Document:
    """Copy of ``root`` for the target month, on the root's day clamped to the month length."""
    safe_day = clamp_day(year, month, root.date.day)
    return {
        "description": root.description,
        "value": root.value,
        "type": root.type,
        "category": root.category,
        "is_recurrent": root.is_recurrent,
        "date": datetime(year, month, safe_day, root.date.hour, root.date.minute, tzinfo=timezone.utc),
        "replicated_from_id": root.id,
    }


def prepare_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate and normalize the editable fields of a transaction."""
    missing = [name for name in _REQUIRED_FIELDS if fields.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        value = float(fields["value"])
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value: {fields['value']!r}") from None
    if value < 0:
        raise ValidationError("Value must not be negative")

    raw_type = fields["type"]
    try:
        tx_type = TransactionType(raw_type.value if isinstance(raw_type, TransactionType) else str(raw_type).upper())
    except ValueError:
        raise ValidationError(f"Invalid transaction type: {raw_type!r}") from None

    return {
        "description": str(fields["description"]),
        "value": value,
        "date": normalize_date(fields["date"]),
        "type": tx_type,
        "category": str(fields["category"]),
        "is_recurrent": bool(fields.get("is_recurrent")),
    }
