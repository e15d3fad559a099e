from datetime import datetime
from typing import List
from pydantic import Field
from spliteasy.schemas.base import APIModel

class PayRequest(APIModel):
    amount: float | None = None
    version: int | None = None

class VersionRequest(APIModel):
    version: int | None = None

class SettlementRecord(APIModel):
    payer_id: int
    receiver_id: int
    amount: float = Field(gt=0)

class SettlementOut(APIModel):
    id: int
    group_id: int
    payer_id: int
    receiver_id: int
    total_amount: float
    paid_amount: float
    remaining_amount: float
    raw_status: str
    version: int
    created_at: datetime | None = None

class Transfer(APIModel):
    from_id: int
    to_id: int
    amount: float

class SettlementMetrics(APIModel):
    total_debt: float
    total_credit: float
    settled_amount: float
    number_of_transfers: int

class SuggestedSettlementsOut(APIModel):
    transfers: List[Transfer]
    metrics: SettlementMetrics
