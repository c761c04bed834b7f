"""Pytest configuration for test isolation.

The pipeline reads ``DATABASE_URL`` and ``BANK_IMPORT_*`` settings from the
environment, and ``db.client`` caches one engine per URL for the life of the
process. Either can leak state between tests (a developer's ``.env`` pointing
at a real database, or an engine still bound to a deleted SQLite file), so an
autouse fixture clears the relevant variables and disposes cached engines
around every test.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from db.client import dispose_engines


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start each test with no database URL and default import settings."""

    for name in list(os.environ):
        if name == "DATABASE_URL" or name.startswith("BANK_IMPORT_"):
            monkeypatch.delenv(name, raising=False)
    yield
    dispose_engines()
