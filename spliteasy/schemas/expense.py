from datetime import datetime
from typing import List, Literal
from pydantic import Field
from spliteasy.schemas.base import APIModel

SplitType = Literal["equal", "exact"]

class SplitInput(APIModel):
    user_id: int
    # required for exact splits, ignored for equal ones
    share_amount: float | None = None

class ExpenseCreate(APIModel):
    group_id: int
    amount: float = Field(gt=0)
    currency: str | None = None
    description: str | None = None
    split_type: SplitType = "equal"
    splits: List[SplitInput] = []

class ExpenseEdit(APIModel):
    group_id: int | None = None
    amount: float | None = Field(default=None, gt=0)
    description: str | None = None
    split_type: SplitType | None = None
    splits: List[SplitInput] | None = None

class SplitOut(APIModel):
    user_id: int
    share_amount: float

class ExpenseOut(APIModel):
    id: int
    group_id: int
    payer_id: int
    amount: float
    currency: str
    split_type: SplitType
    description: str | None = None
    created_at: datetime | None = None
    splits: List[SplitOut]
