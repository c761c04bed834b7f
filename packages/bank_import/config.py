"""Runtime settings for the import pipeline.

Settings are a validated pydantic model. :func:`load_settings` builds one
from the environment (the CLI loads ``.env`` first); library callers may also
construct :class:`ImportSettings` directly.

Environment variables
---------------------
- ``DATABASE_URL``: SQLAlchemy URL used by the SQL unit of work.
- ``BANK_IMPORT_MAX_FILE_BYTES``: upload size limit (default 10 MiB).
- ``BANK_IMPORT_REJECT_FUTURE_DATES``: record rows dated after today as
  errors (default ``true``).
- ``BANK_IMPORT_RECENT_SESSIONS_LIMIT``: how many sessions
  ``list_sessions`` returns by default (default 50).
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_RECENT_SESSIONS_LIMIT = 50

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ImportSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    database_url: str | None = None
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    reject_future_dates: bool = True
    recent_sessions_limit: int = DEFAULT_RECENT_SESSIONS_LIMIT

    @field_validator("max_file_bytes", "recent_sessions_limit")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("database_url")
    @classmethod
    def _blank_url_is_unset(cls, v: str | None) -> str | None:
        return v or None


def _env_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean value: {raw!r}")


def load_settings(environ: Mapping[str, str] | None = None) -> ImportSettings:
    """Build :class:`ImportSettings` from ``environ`` (default ``os.environ``).

    Unset variables keep the model defaults. Invalid values raise
    ``pydantic.ValidationError`` (or ``ValueError`` for booleans).
    """

    env = os.environ if environ is None else environ
    values: dict[str, object] = {}
    if env.get("DATABASE_URL"):
        values["database_url"] = env["DATABASE_URL"]
    if env.get("BANK_IMPORT_MAX_FILE_BYTES"):
        values["max_file_bytes"] = env["BANK_IMPORT_MAX_FILE_BYTES"]
    if env.get("BANK_IMPORT_RECENT_SESSIONS_LIMIT"):
        values["recent_sessions_limit"] = env["BANK_IMPORT_RECENT_SESSIONS_LIMIT"]
    values["reject_future_dates"] = _env_bool(env.get("BANK_IMPORT_REJECT_FUTURE_DATES"), True)
    return ImportSettings.model_validate(values)


__all__ = ["DEFAULT_MAX_FILE_BYTES", "ImportSettings", "load_settings"]
