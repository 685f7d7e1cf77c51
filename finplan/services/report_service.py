"""
Monthly aggregates computed from the month's transaction documents.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List

from ..models import TransactionType


def summarize(docs: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals per type with a per-category breakdown, plus the month balance."""
    totals: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for doc in docs:
        totals[doc["type"]][doc["category"]] += doc["value"]

    data: List[Dict[str, Any]] = []
    for tx_type, per_category in totals.items():
        data.append({
            "type": tx_type,
            "total": sum(per_category.values()),
            "breakdown": [
                {"category": category, "total": total}
                for category, total in per_category.items()
            ],
        })

    income = sum(entry["total"] for entry in data if entry["type"] == TransactionType.INCOME.value)
    expense = sum(entry["total"] for entry in data if entry["type"] == TransactionType.EXPENSE.value)
    return {"data": data, "balance": income - expense}


def expense_breakdown(docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Expense totals per category, largest first."""
    totals: Dict[str, float] = defaultdict(float)
    for doc in docs:
        if doc["type"] == TransactionType.EXPENSE.value:
            totals[doc["category"]] += doc["value"]
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [{"category": category, "total": total} for category, total in ranked]
