"""
DTO base types shared by the payment views and the auth endpoint.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field, PlainSerializer, model_serializer


# Amounts leave the API as fixed two-decimal strings ("30.00"), never floats.
Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json")]


def _utc_z(value: datetime) -> str:
    ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class DTOBase(BaseModel):
    """Base DTO: every datetime, however nested, is rendered as UTC with a Z suffix."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        def convert(value):
            if isinstance(value, datetime):
                return _utc_z(value)
            if isinstance(value, (list, tuple)):
                return type(value)(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(handler(self))


class TokenRequestDTO(DTOBase):
    """Client-credentials exchange for an access token."""
    client_id: str = Field(..., min_length=1, max_length=100)
    client_secret: str = Field(..., min_length=1, max_length=200)


class TokenDTO(DTOBase):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int = Field(..., description="Lifetime in seconds")
