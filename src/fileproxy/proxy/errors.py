"""Outward failure kinds of the file proxy.

Each kind carries the message code sent to the caller and the HTTP status it
is reported under. Several kinds deliberately share a status code and differ
only in the message.
"""

from __future__ import annotations

from fastapi import status


class FileProxyError(Exception):
    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.code
        super().__init__(self.detail)


class RegistrationExists(FileProxyError):
    code = "ALREADY_EXISTS"


class CreateFailed(FileProxyError):
    code = "CREATE_ERROR"


class DeleteFailed(FileProxyError):
    code = "DELETE_ERROR"


class RegistrationNotFound(FileProxyError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class RegistrationExpired(FileProxyError):
    code = "EXPIRED"
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamNotFound(FileProxyError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, upstream_status: int | None = None, detail: str | None = None) -> None:
        self.upstream_status = upstream_status
        super().__init__(detail)


class DownloadError(FileProxyError):
    code = "DOWNLOAD_ERROR"
