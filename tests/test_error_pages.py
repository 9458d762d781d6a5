from __future__ import annotations

import pytest

from fileproxy.proxy.messages import ERROR_MESSAGES, LOCALES, render_error_page


@pytest.mark.parametrize("code", ["EXPIRED", "NOT_FOUND", "DOWNLOAD_ERROR"])
def test_page_contains_every_locale(code: str) -> None:
    page = render_error_page(code)

    for locale in LOCALES:
        assert f'<h2 lang="{locale}">{ERROR_MESSAGES[locale][code]}</h2>' in page
    assert page.startswith("<!doctype html>")


def test_every_locale_defines_the_same_codes() -> None:
    codes = {locale: set(messages) for locale, messages in ERROR_MESSAGES.items()}
    assert set(codes) == set(LOCALES)
    assert codes["en"] == codes["ro"] == codes["ru"]


def test_unknown_code_is_rendered_escaped() -> None:
    page = render_error_page("<b>UNKNOWN</b>")

    assert "&lt;b&gt;UNKNOWN&lt;/b&gt;" in page
    assert "<b>" not in page
