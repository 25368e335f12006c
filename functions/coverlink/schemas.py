"""
Pydantic schemas for the cover-linking FastAPI service and queued messages.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class LinkCoverPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber", max_length=32)
    uid: str
    push_token: list[str] = Field(default_factory=list, alias="pushToken")


class EDIMemberCoverPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber", max_length=32)
    member_number: str = Field(..., alias="memberNumber")
    payer_slade_code: int = Field(..., alias="payerSladeCode")


class EnqueueResponse(BaseModel):
    topic: str
    status: Literal["queued"]


class PubSubMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str
    attributes: dict[str, str] = Field(default_factory=dict)
    message_id: Optional[str] = Field(default=None, alias="messageId")


class PubSubEnvelope(BaseModel):
    message: PubSubMessage
    subscription: Optional[str] = None


class StatusResponse(BaseModel):
    status: Literal["success", "ok"]
