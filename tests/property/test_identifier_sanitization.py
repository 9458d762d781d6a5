"""Property-based tests for registration identifier sanitization."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from fileproxy.common.schemas import is_valid_identifier
from fileproxy.proxy.store import InvalidIdentifier, sanitize_identifier


@given(st.text(min_size=1, max_size=64, alphabet=st.characters(min_codepoint=33, max_codepoint=126)))
def test_sanitized_path_stays_inside_storage(registration_id: str) -> None:
    with tempfile.TemporaryDirectory() as tmp_dir:
        storage_root = Path(tmp_dir)
        try:
            resolved = sanitize_identifier(storage_root, registration_id)
        except InvalidIdentifier:
            assert not is_valid_identifier(registration_id)
        else:
            assert resolved.parent == storage_root.resolve()
            assert resolved.name == f"{registration_id}.json"


@given(st.text(min_size=1, max_size=64).filter(lambda s: "\x00" not in s))
def test_parent_escape_is_always_rejected(suffix: str) -> None:
    with tempfile.TemporaryDirectory() as tmp_dir:
        with pytest.raises(InvalidIdentifier):
            sanitize_identifier(Path(tmp_dir), f"../{suffix}")


@given(st.from_regex(r"\A[A-Za-z0-9_-]{1,128}\Z"))
def test_safe_identifiers_are_accepted(registration_id: str) -> None:
    with tempfile.TemporaryDirectory() as tmp_dir:
        assert sanitize_identifier(Path(tmp_dir), registration_id).stem == registration_id
