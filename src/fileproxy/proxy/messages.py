"""Localized, human-readable error pages for the fetch route."""

from __future__ import annotations

from html import escape

LOCALES = ("en", "ro", "ru")

ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "EXPIRED": "The link to this file has expired.",
        "NOT_FOUND": "The requested file could not be found.",
        "DOWNLOAD_ERROR": "An error occurred while downloading the file. Please try again later.",
    },
    "ro": {
        "EXPIRED": "Linkul către acest fișier a expirat.",
        "NOT_FOUND": "Fișierul solicitat nu a fost găsit.",
        "DOWNLOAD_ERROR": "A apărut o eroare la descărcarea fișierului. Vă rugăm să încercați mai târziu.",
    },
    "ru": {
        "EXPIRED": "Срок действия ссылки на этот файл истёк.",
        "NOT_FOUND": "Запрошенный файл не найден.",
        "DOWNLOAD_ERROR": "При загрузке файла произошла ошибка. Пожалуйста, повторите попытку позже.",
    },
}

_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <title>Error</title>
  </head>
  <body>
    <h1>!</h1>
{headings}
  </body>
</html>
"""


def localized_message(locale: str, code: str) -> str:
    return ERROR_MESSAGES.get(locale, {}).get(code, code)


def render_error_page(code: str) -> str:
    """Render every locale's message for ``code`` on one page, independent of the client's language."""
    headings = "\n".join(
        f'    <h2 lang="{locale}">{escape(localized_message(locale, code))}</h2>' for locale in LOCALES
    )
    return _PAGE_TEMPLATE.format(headings=headings)
