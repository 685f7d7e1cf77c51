from .transactions import (
    TransactionBase,
    TransactionCreate,
    TransactionUpdate,
    Transaction,
    MonthlyList,
    DueAlert,
)

from .summary import (
    CategoryTotal,
    TypeSummary,
    MonthlySummary,
)
