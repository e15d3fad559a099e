from datetime import datetime
from pydantic import field_validator
from spliteasy.models.message import MAX_MESSAGE_LENGTH
from spliteasy.schemas.base import APIModel

class MessageCreate(APIModel):
    content: str

    @field_validator("content")
    @classmethod
    def clean_content(cls, v: str) -> str:
        # length is checked on the stored (stripped) text
        v = v.strip()
        if not v:
            raise ValueError("Message content is required")
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message content must be at most {MAX_MESSAGE_LENGTH} characters")
        return v

class MessageOut(APIModel):
    id: int
    group_id: int
    sender_id: int
    content: str
    created_at: datetime | None = None

class UnreadCountOut(APIModel):
    group_id: int
    unread_count: int
