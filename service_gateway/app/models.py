"""
Data models for the gateway and its admin surface.

Records are persisted as JSON with camelCase field names; Python code uses
snake_case attributes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Plan = Literal["free", "basic", "premium"]
ClientType = Literal["service", "application", "personal"]

PLAN_CREDITS: Dict[str, int] = {
    "free": 100,
    "basic": 1000,
    "premium": 10000,
}

MAX_CREDITS = 1_000_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_timestamp(value: Any) -> Any:
    """Accept epoch milliseconds as well as ISO-8601 strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    return value


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    """Base model serialising with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ApiKeyRecord(CamelModel):
    """An API key and the client and target it is bound to."""

    key: str
    client_id: str = Field(alias="clientId")
    target_id: Optional[str] = Field(default=None, alias="targetId")
    active: bool = True
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @field_validator("expires_at", "created_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        return _coerce_timestamp(value)

    @field_validator("expires_at", "created_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.active and not self.is_expired(now)


class ClientRecord(CamelModel):
    """A billed client."""

    id: str
    name: str
    email: Optional[str] = None
    plan: Plan = "free"
    type: ClientType = "personal"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        return _coerce_timestamp(value)


class TargetDescriptor(CamelModel):
    """A routable backend and the path pattern it serves."""

    id: str
    name: str
    pattern: str
    is_regex: bool = Field(default=False, alias="isRegex")
    target_url: str = Field(alias="targetUrl")
    cost: Optional[int] = Field(default=None, ge=0)
    custom_headers: Dict[str, str] = Field(default_factory=dict, alias="customHeaders")
    forward_api_key: bool = Field(default=False, alias="forwardApiKey")
    add_credits_header: bool = Field(default=True, alias="addCreditsHeader")
    description: str = ""


class CostRule(BaseModel):
    """One row of the cost table."""

    pattern: str
    cost: int = Field(ge=0)


class CreditResult(BaseModel):
    """Outcome of a debit attempt."""

    success: bool
    remaining: int
    used: int = 0


# Admin request bodies. Fields are optional so the services can answer
# missing values with the gateway's own validation messages.

class ClientCreate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    plan: Plan = "free"
    type: ClientType = "personal"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClientUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    plan: Optional[Plan] = None
    type: Optional[ClientType] = None
    metadata: Optional[Dict[str, Any]] = None


class ApiKeyCreate(CamelModel):
    client_id: Optional[str] = Field(default=None, alias="clientId")
    target_id: Optional[str] = Field(default=None, alias="targetId")
    active: bool = True
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    @field_validator("expires_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        return _coerce_timestamp(value)

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)


class ApiKeyUpdate(CamelModel):
    """Only ``active`` and ``expiresAt`` may change; an explicit null clears the expiry."""

    active: Optional[bool] = None
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    @field_validator("expires_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        return _coerce_timestamp(value)

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)


class CreditCreate(CamelModel):
    client_id: Optional[str] = Field(default=None, alias="clientId")
    credits: Optional[int] = None


class CreditSet(CamelModel):
    credits: Optional[int] = None


class CreditAdd(CamelModel):
    amount: Optional[int] = None


class TargetTable(BaseModel):
    """Shape of the targets YAML file."""

    targets: List[TargetDescriptor] = Field(default_factory=list)


class CostTableFile(BaseModel):
    """Shape of the cost table YAML file."""

    default_cost: int = Field(default=1, ge=0)
    rules: List[CostRule] = Field(default_factory=list)
