from typing import List

from pydantic import BaseModel


class CategoryTotal(BaseModel):
    category: str
    total: float


class TypeSummary(BaseModel):
    type: str
    total: float
    breakdown: List[CategoryTotal]


class MonthlySummary(BaseModel):
    year: int
    month: int
    data: List[TypeSummary]
    balance: float
