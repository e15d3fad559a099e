from spliteasy.schemas.base import APIModel

class BalanceOut(APIModel):
    user_id: int
    balance: float
    # False when the user shows up in expenses/settlements but left the group
    is_member: bool = True
