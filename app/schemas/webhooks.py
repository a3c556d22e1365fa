from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from ..models.outbox import OutboxTopic


class SubscriptionStatusEnum(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


SUPPORTED_TOPICS = {t.value for t in OutboxTopic}


def _validate_url(v: str) -> str:
    v = v.strip()
    if not (v.startswith("https://") or v.startswith("http://")):
        raise ValueError("url must be an http(s) URL")
    return v


def _validate_events(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return v
    if not v:
        raise ValueError("events must not be empty")
    unknown = [e for e in v if e not in SUPPORTED_TOPICS]
    if unknown:
        raise ValueError(f"Unsupported events: {', '.join(unknown)}")
    # keep order, drop duplicates
    return list(dict.fromkeys(v))


class WebhookSubscriptionCreate(BaseModel):
    org_id: str = Field(..., min_length=1, max_length=36)
    url: str = Field(..., max_length=2048)
    events: List[str] = Field(default_factory=lambda: [OutboxTopic.PASS_PAID.value])
    description: Optional[str] = Field(None, max_length=500)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @field_validator('events')
    @classmethod
    def validate_events(cls, v: List[str]) -> List[str]:
        return _validate_events(v)


class WebhookSubscriptionUpdate(BaseModel):
    url: Optional[str] = Field(None, max_length=2048)
    events: Optional[List[str]] = None
    status: Optional[SubscriptionStatusEnum] = None
    description: Optional[str] = Field(None, max_length=500)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_url(v) if v is not None else v

    @field_validator('events')
    @classmethod
    def validate_events(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_events(v)


class WebhookSubscriptionResponse(BaseModel):
    id: str
    org_id: str
    url: str
    events: List[str]
    status: str
    description: Optional[str] = None
    last_delivery_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WebhookSubscriptionCreated(WebhookSubscriptionResponse):
    """Only the create response carries the signing secret"""
    secret: str
