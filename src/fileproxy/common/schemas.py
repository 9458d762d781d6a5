"""Registration wire and storage models."""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
MILLIS_PER_MINUTE = 60_000
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def is_valid_identifier(value: str) -> bool:
    return isinstance(value, str) and IDENTIFIER_PATTERN.fullmatch(value) is not None


class AuthMode(str, Enum):
    NONE = "none"
    BASIC = "basic"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("auth_mode", mode="before", check_fields=False)
    @classmethod
    def _default_auth_mode(cls, value):
        if value is None or value == "":
            return AuthMode.NONE
        return value


class RegistrationRequest(_CamelModel):
    """Body of ``POST /file``.

    The names used by the first generation of clients (``uuid``, ``path``,
    ``auth``, ``expiresIn``) are still accepted.
    """

    id: str = Field(validation_alias=AliasChoices("id", "uuid"))
    target_url: str = Field(validation_alias=AliasChoices("targetUrl", "target_url", "path"))
    content_type: str
    download_name: Optional[str] = None
    auth_mode: AuthMode = Field(
        default=AuthMode.NONE,
        validation_alias=AliasChoices("authMode", "auth_mode", "auth"),
    )
    expires_in_minutes: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("expiresInMinutes", "expires_in_minutes", "expiresIn"),
    )

    @field_validator("content_type")
    @classmethod
    def _header_safe_content_type(cls, value: str) -> str:
        if _CONTROL_CHARS.search(value):
            raise ValueError("contentType must not contain control characters")
        try:
            value.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise ValueError("contentType must be latin-1 encodable") from exc
        return value

    @field_validator("expires_in_minutes", mode="before")
    @classmethod
    def _truncate_minutes(cls, value):
        if value is None or isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, bool):
            raise ValueError("expiresInMinutes must be a number")
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            value = float(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("expiresInMinutes must be finite")
            return math.trunc(value)
        return value

    def to_registration(self, now_ms: int) -> "Registration":
        """Freeze the relative expiry into an absolute timestamp using ``now_ms``."""
        expires_at = None
        if self.expires_in_minutes is not None:
            expires_at = now_ms + self.expires_in_minutes * MILLIS_PER_MINUTE
        return Registration(
            id=self.id,
            target_url=self.target_url,
            content_type=self.content_type,
            download_name=self.download_name,
            auth_mode=self.auth_mode,
            expires_at_epoch_millis=expires_at,
        )


class Registration(_CamelModel):
    """A stored registration as persisted by the registration store.

    Records written by the first generation of the service (``uuid``,
    ``path``, ``auth``, ``expiresAt``) load into the same model.
    """

    id: str = Field(validation_alias=AliasChoices("id", "uuid"))
    target_url: str = Field(validation_alias=AliasChoices("targetUrl", "target_url", "path"))
    content_type: str
    download_name: Optional[str] = None
    auth_mode: AuthMode = Field(
        default=AuthMode.NONE,
        validation_alias=AliasChoices("authMode", "auth_mode", "auth"),
    )
    expires_at_epoch_millis: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("expiresAtEpochMillis", "expires_at_epoch_millis", "expiresAt"),
    )

    @field_validator("auth_mode", mode="before")
    @classmethod
    def _unknown_auth_is_none(cls, value):
        # Old records stored whatever the client sent; only "basic" ever meant credentials.
        if isinstance(value, str) and value not in {mode.value for mode in AuthMode}:
            return AuthMode.NONE
        return value

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_epoch_millis is not None and now_ms >= self.expires_at_epoch_millis

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageResponse(BaseModel):
    message: str


class RegistrationCreatedResponse(BaseModel):
    message: str = "File uploaded"
    file: dict[str, object]
