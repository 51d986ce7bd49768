# drop_relay/api/schemas.py

from typing import List

from pydantic import BaseModel, Field, StrictInt, StrictStr


class SendRequestSchema(BaseModel):
    to_public_key: StrictStr = Field(pattern=r"^[A-Fa-f0-9]{40}$")
    encrypted_data: StrictStr
    timestamp: StrictInt
    signature: StrictStr


class PollRequestSchema(BaseModel):
    timestamp: StrictInt
    signature: StrictStr


class MessageSchema(BaseModel):
    id: int
    from_public_key: str
    encrypted_data: str
    created_at: str


class ErrorSchema(BaseModel):
    error: str


PollResponseSchema = List[MessageSchema]
