"""Registration lifecycle: creation, explicit deletion and lazy expiry on read."""

from __future__ import annotations

import time
from typing import Callable

import structlog
from pydantic import ValidationError

from ..common.schemas import Registration, RegistrationRequest
from .errors import (
    CreateFailed,
    DeleteFailed,
    DownloadError,
    RegistrationExists,
    RegistrationExpired,
    RegistrationNotFound,
)
from .store import InvalidIdentifier, RegistrationAlreadyExists, RegistrationMissing, RegistrationStore

LOGGER = structlog.get_logger("fileproxy.registrations")

Clock = Callable[[], int]


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


class RegistrationManager:
    """Applies the registration rules on top of a :class:`RegistrationStore`.

    Expiry is evaluated only when a registration is read; there is no
    background sweep. The clock returns milliseconds since the epoch and is
    injectable so expiry can be exercised without waiting.
    """

    def __init__(self, store: RegistrationStore, clock: Clock = epoch_millis) -> None:
        self._store = store
        self._clock = clock

    async def create(self, request: RegistrationRequest) -> Registration:
        registration = request.to_registration(self._clock())
        try:
            await self._store.ensure_ready()
            if await self._store.exists(registration.id):
                raise RegistrationExists(registration.id)
            payload = registration.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
            await self._store.put(registration.id, payload)
        except RegistrationExists:
            raise
        except RegistrationAlreadyExists as exc:
            raise RegistrationExists(registration.id) from exc
        except InvalidIdentifier as exc:
            LOGGER.info("registration_rejected", registration_id=registration.id, reason="invalid_id")
            raise CreateFailed(str(exc)) from exc
        except OSError as exc:
            LOGGER.error("registration_create_failed", registration_id=registration.id, error=str(exc))
            raise CreateFailed(str(exc)) from exc

        LOGGER.info(
            "registration_created",
            registration_id=registration.id,
            auth_mode=registration.auth_mode.value,
            expires_at=registration.expires_at_epoch_millis,
        )
        return registration

    async def delete(self, registration_id: str) -> None:
        try:
            await self._store.remove(registration_id)
        except (RegistrationMissing, InvalidIdentifier, OSError) as exc:
            LOGGER.info("registration_delete_failed", registration_id=registration_id, error=str(exc))
            raise DeleteFailed(str(exc)) from exc
        LOGGER.info("registration_deleted", registration_id=registration_id)

    async def resolve_for_read(self, registration_id: str) -> Registration:
        try:
            raw = await self._store.get(registration_id)
        except (RegistrationMissing, InvalidIdentifier) as exc:
            raise RegistrationNotFound(registration_id) from exc
        except OSError as exc:
            LOGGER.error("registration_read_failed", registration_id=registration_id, error=str(exc))
            raise DownloadError(str(exc)) from exc

        try:
            registration = Registration.model_validate_json(raw)
        except ValidationError as exc:
            LOGGER.error("registration_corrupt", registration_id=registration_id, error=str(exc))
            raise DownloadError("Stored registration is unreadable") from exc

        if registration.is_expired(self._clock()):
            await self._discard_expired(registration_id)
            raise RegistrationExpired(registration_id)
        return registration

    async def _discard_expired(self, registration_id: str) -> None:
        try:
            await self._store.remove(registration_id)
        except (RegistrationMissing, OSError) as exc:
            # A concurrent delete may have won; expiry is reported either way.
            LOGGER.info("expired_registration_cleanup_skipped", registration_id=registration_id, error=str(exc))
            return
        LOGGER.info("expired_registration_removed", registration_id=registration_id)
