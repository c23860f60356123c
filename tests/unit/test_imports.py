"""Smoke tests ensuring packages import correctly."""

from __future__ import annotations


def test_import_universal_am_package() -> None:
    import importlib

    assert importlib.import_module("universal_am") is not None
    assert importlib.import_module("universal_am.cli") is not None
