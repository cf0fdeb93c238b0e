"""Shared fixtures: route the bindings to the in-process fake engine."""

import pytest

from fake_usearch import FakeLibrary
from usearch_typed import _ffi


@pytest.fixture(autouse=True)
def engine(monkeypatch):
    """Replace the native library with a fresh FakeLibrary."""
    fake = FakeLibrary()
    monkeypatch.setattr(_ffi, "get_library", lambda: fake)
    return fake
