"""
Due-date scan over expenses.

Finds the EXPENSE records falling due today or within the next few days and
builds an alert text for each. Delivering the alerts is left to the caller;
the daily cron job only logs them.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..collection import TransactionCollection
from ..core import config
from ..recurrence import RecurrenceEngine, first_of_next_month, normalize_date

logger = logging.getLogger(__name__)


def alert_message(doc: Dict[str, Any], days_until: int) -> str:
    label = f'"{doc["description"]}" {doc["value"]:.2f}'
    if days_until == 0:
        return f"Due today: {label}."
    if days_until == 1:
        return f"Heads up: {label} is due tomorrow!"
    return f"Bill coming up: {label} is due in {days_until} days."


def due_soon(docs: Iterable[Dict[str, Any]], today: datetime, days: int) -> List[Dict[str, Any]]:
    """Alerts for the expenses in ``docs`` due between ``today`` and ``today + days``."""
    alerts = []
    for doc in docs:
        if doc.get("type") != "EXPENSE":
            continue
        days_until = (doc["date"].date() - today.date()).days
        if not 0 <= days_until <= days:
            continue
        alerts.append({
            "id": doc["id"],
            "description": doc["description"],
            "value": doc["value"],
            "category": doc["category"],
            "date": doc["date"],
            "days_until": days_until,
            "message": alert_message(doc, days_until),
        })
    alerts.sort(key=lambda alert: (alert["date"], alert["description"]))
    return alerts


async def scan_due_soon(
    collection: TransactionCollection,
    engine: RecurrenceEngine,
    today: Optional[datetime] = None,
    days: Optional[int] = None,
) -> List[Dict[str, Any]]:
    today = normalize_date(today or datetime.now(timezone.utc))
    days = config.DUE_SOON_DAYS if days is None else days
    end = today + timedelta(days=days + 1)

    # Recurring bills only exist once their month is materialized
    month_start = today.replace(day=1)
    while month_start < end:
        await engine.materialize(month_start.year, month_start.month)
        month_start = first_of_next_month(month_start)

    docs = await collection.find(
        {"date": {"$gte": today, "$lt": end}, "type": "EXPENSE"},
        sort=[("date", 1)],
    )
    alerts = due_soon(docs, today, days)
    logger.info("Due-date scan from %s: %d expenses due within %d days", today.date(), len(alerts), days)
    return alerts
