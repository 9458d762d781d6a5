"""Uvicorn entrypoint for the file proxy."""

from __future__ import annotations

import uvicorn

from ..common.settings import FileProxySettings
from .app import create_app


def run() -> None:
    settings = FileProxySettings()
    uvicorn.run(
        create_app(settings),
        host=settings.server_host,
        port=settings.server_port,
        log_config=None,
        proxy_headers=True,
    )


if __name__ == "__main__":
    run()
