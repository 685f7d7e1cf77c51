from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class TransactionBase(BaseModel):
    description: str = Field(min_length=1)
    value: float = Field(ge=0)
    date: str                    # "YYYY-MM-DD"; stored as UTC midnight
    type: str                    # "INCOME" | "EXPENSE", any casing
    category: str = Field(min_length=1)
    is_recurrent: bool = False


class TransactionCreate(TransactionBase):
    pass


class TransactionUpdate(TransactionBase):
    pass


class Transaction(BaseModel):
    id: str
    description: str
    value: float
    type: str
    category: str
    date: datetime
    is_recurrent: bool
    replicated_from_id: Optional[str] = None
    is_superseded: Optional[bool] = None


class MonthlyList(BaseModel):
    year: int
    month: int
    transactions: List[Transaction]


class DueAlert(BaseModel):
    id: str
    description: str
    value: float
    category: str
    date: datetime
    days_until: int
    message: str
