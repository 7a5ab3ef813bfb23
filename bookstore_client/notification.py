from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PayloadValidationError

from bookstore_client.errors import DecodeError


class NotificationPayload(BaseModel):
    """Wire shape of a notification as the backend sends it"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Union[int, str]
    title: str = ""
    message: str = ""
    category: str = Field("info", validation_alias=AliasChoices("notification_type", "type", "category"))
    is_read: bool = Field(False, validation_alias=AliasChoices("is_read", "isRead", "read"))
    created_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("created_at", "createdAt"))
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", "message", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        return value or "info"

    @field_validator("data", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, value: Union[int, str]) -> Union[int, str]:
        if isinstance(value, str) and not value.strip():
            raise ValueError("notification id cannot be empty")
        return value


@dataclass(frozen=True)
class Notification:
    """A single notification shown to the signed-in user."""
    id: str
    title: str = ""
    message: str = ""
    category: str = "info"
    is_read: bool = False
    created_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        marker = " " if self.is_read else "*"
        return f"{marker} [{self.id}] {self.title}"

    def with_read(self, is_read: bool = True) -> "Notification":
        if self.is_read == is_read:
            return self
        return replace(self, is_read=is_read)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.category,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "data": self.data,
        }

    @staticmethod
    def from_dict(raw: Any) -> "Notification":
        """Build a Notification from a decoded JSON object, raising DecodeError on bad shapes."""
        if not isinstance(raw, dict):
            raise DecodeError(f"Expected notification object, got {type(raw).__name__}", details=raw)
        try:
            payload = NotificationPayload.model_validate(raw)
        except PayloadValidationError as exc:
            raise DecodeError(f"Malformed notification payload: {exc.error_count()} error(s)",
                              details=raw) from exc
        return Notification(
            id=str(payload.id),
            title=payload.title,
            message=payload.message,
            category=payload.category,
            is_read=payload.is_read,
            created_at=payload.created_at,
            data=payload.data,
        )


def normalize_id(notification_id: Union[int, str]) -> str:
    """Ids arrive as ints from the API and as strings from callers; compare them as strings."""
    return str(notification_id).strip()
