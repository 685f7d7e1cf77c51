"""
Domain model for transactions and their recurrence chains.

Records are persisted flat: an instance only differs from a root by
carrying ``replicated_from_id``. ``Transaction.role`` lifts that optional
field into the tagged variant ``Root`` / ``Instance(root_id)``; an
``Instance`` always names a root, never another instance.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import ValidationError


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


@dataclass(frozen=True)
class Root:
    pass


@dataclass(frozen=True)
class Instance:
    root_id: str


ChainRole = Union[Root, Instance]


def new_id() -> str:
    return uuid.uuid4().hex


def parse_id(value: Any) -> str:
    """Return the canonical form of a transaction id or raise ValidationError."""
    try:
        return uuid.UUID(str(value)).hex
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid transaction id: {value!r}") from None


@dataclass
class Transaction:
    id: str
    description: str
    value: float
    type: TransactionType
    category: str
    date: datetime
    is_recurrent: bool = False
    replicated_from_id: Optional[str] = None
    is_superseded: Optional[bool] = None

    @property
    def role(self) -> ChainRole:
        if self.replicated_from_id:
            return Instance(self.replicated_from_id)
        return Root()

    @property
    def chain_root_id(self) -> str:
        """Id of the root heading this record's chain (its own id for a root)."""
        role = self.role
        if isinstance(role, Instance):
            return role.root_id
        return self.id

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Transaction":
        return cls(
            id=doc["id"],
            description=doc["description"],
            value=doc["value"],
            type=TransactionType(doc["type"]),
            category=doc["category"],
            date=doc["date"],
            is_recurrent=bool(doc.get("is_recurrent")),
            replicated_from_id=doc.get("replicated_from_id"),
            is_superseded=doc.get("is_superseded"),
        )

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "value": self.value,
            "type": self.type,
            "category": self.category,
            "date": self.date,
            "is_recurrent": self.is_recurrent,
        }
        if self.replicated_from_id:
            doc["replicated_from_id"] = self.replicated_from_id
        if self.is_superseded is not None:
            doc["is_superseded"] = self.is_superseded
        return doc
