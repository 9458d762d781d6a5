"""Durable registration storage on the local filesystem."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from ..common.schemas import is_valid_identifier


class StoreError(Exception):
    """Base class for registration store failures."""


class InvalidIdentifier(StoreError):
    pass


class RegistrationAlreadyExists(StoreError):
    pass


class RegistrationMissing(StoreError):
    pass


def sanitize_identifier(storage_dir: Path, registration_id: str) -> Path:
    """Return the record path for ``registration_id``, refusing anything that could escape ``storage_dir``."""
    if not is_valid_identifier(registration_id):
        raise InvalidIdentifier(f"Invalid registration id: {registration_id!r}")
    root = storage_dir.resolve()
    resolved = (root / f"{registration_id}.json").resolve(strict=False)
    if resolved.parent != root:
        raise InvalidIdentifier(f"Invalid registration id: {registration_id!r}")
    return resolved


class RegistrationStore:
    async def ensure_ready(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, registration_id: str, payload: bytes) -> None:
        raise NotImplementedError

    async def get(self, registration_id: str) -> bytes:
        raise NotImplementedError

    async def remove(self, registration_id: str) -> None:
        raise NotImplementedError

    async def exists(self, registration_id: str) -> bool:
        raise NotImplementedError

    def status(self) -> dict[str, object]:
        raise NotImplementedError


class LocalRegistrationStore(RegistrationStore):
    """One ``<id>.json`` file per registration under a single directory."""

    def __init__(self, storage_path: Path):
        self._storage_path = Path(storage_path)

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    async def ensure_ready(self) -> None:
        self._storage_path.mkdir(parents=True, exist_ok=True)

    async def put(self, registration_id: str, payload: bytes) -> None:
        path = sanitize_identifier(self._storage_path, registration_id)
        if path.exists():
            raise RegistrationAlreadyExists(registration_id)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "wb") as file_obj:
                file_obj.write(payload)
                file_obj.flush()
                os.fsync(file_obj.fileno())
            # link() refuses to replace an existing file, so concurrent creators cannot overwrite each other.
            try:
                os.link(tmp_name, path)
            except FileExistsError as exc:
                raise RegistrationAlreadyExists(registration_id) from exc
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    async def get(self, registration_id: str) -> bytes:
        path = sanitize_identifier(self._storage_path, registration_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise RegistrationMissing(registration_id) from exc

    async def remove(self, registration_id: str) -> None:
        path = sanitize_identifier(self._storage_path, registration_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise RegistrationMissing(registration_id) from exc

    async def exists(self, registration_id: str) -> bool:
        try:
            path = sanitize_identifier(self._storage_path, registration_id)
        except InvalidIdentifier:
            return False
        return path.is_file()

    def status(self) -> dict[str, object]:
        storage = self._storage_path
        return {
            "backend": "local",
            "storage_path": str(storage),
            "writable": storage.exists() and os.access(storage, os.W_OK),
        }
