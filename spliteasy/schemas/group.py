from datetime import datetime
from pydantic import Field, field_validator
from spliteasy.schemas.base import APIModel

class GroupCreate(APIModel):
    title: str = Field(min_length=1, max_length=100)
    currency: str = "USD"

    @field_validator("currency")
    @classmethod
    def three_letter_code(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Currency must be exactly 3 letters (e.g. USD, EUR, MAD)")
        return v

class GroupEdit(APIModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)

class GroupOut(APIModel):
    id: int
    title: str
    currency: str
    owner_id: int
    created_at: datetime | None = None

class GroupMemberOut(APIModel):
    user_id: int
    name: str | None = None
    email: str | None = None
    is_admin: bool

class MemberAdminUpdate(APIModel):
    is_admin: bool
