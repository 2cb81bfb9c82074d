"""Configuration constants for the KidPoints web API."""
from __future__ import annotations

import os
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() not in {"0", "false", "no", "off", ""}


SQLITE_FILE_NAME = os.environ.get("KIDPOINTS_SQLITE", "kidpoints.db")
DATABASE_URL = os.environ.get("KIDPOINTS_DATABASE_URL", f"sqlite:///{SQLITE_FILE_NAME}")
FAMILY_TIMEZONE = os.environ.get("KIDPOINTS_TIMEZONE", "UTC")
REJECTION_POLICY = os.environ.get("KIDPOINTS_REJECTION_POLICY", "keep")
SERIALIZE_LEDGER = _flag("KIDPOINTS_SERIALIZE_LEDGER", "1")
LOG_PATH = os.environ.get("KIDPOINTS_LOG_PATH") or None
HISTORY_LIMIT = int(os.environ.get("KIDPOINTS_HISTORY_LIMIT", "50"))

# Identity headers set by the authentication proxy in front of the API.
PROFILE_HEADER = "X-Profile-Id"
ROLE_HEADER = "X-Profile-Role"
FAMILY_HEADER = "X-Family-Id"
CALLER_HEADERS: Tuple[str, ...] = (PROFILE_HEADER, ROLE_HEADER, FAMILY_HEADER)

__all__ = [
    "SQLITE_FILE_NAME",
    "DATABASE_URL",
    "FAMILY_TIMEZONE",
    "REJECTION_POLICY",
    "SERIALIZE_LEDGER",
    "LOG_PATH",
    "HISTORY_LIMIT",
    "PROFILE_HEADER",
    "ROLE_HEADER",
    "FAMILY_HEADER",
    "CALLER_HEADERS",
]
