# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Usage store key layout for access-control records."""

REFLINK_BY_ID_PREFIX = "reflinks:by_id:"
REFLINK_BY_CODE_PREFIX = "reflinks:by_code:"
USAGE_EVENTS_PREFIX = "usage_events:"
RATE_LIMIT_WINDOW_PREFIX = "ratelimit:"
RATE_LIMIT_LOG_KEY = "ratelimit_log"

NO_REFLINK = "-"


def reflink_key(reflink_id: str) -> str:
    return f"{REFLINK_BY_ID_PREFIX}{reflink_id}"


def reflink_code_key(code: str) -> str:
    return f"{REFLINK_BY_CODE_PREFIX}{code}"


def usage_events_key(reflink_id: str) -> str:
    return f"{USAGE_EVENTS_PREFIX}{reflink_id}"


def window_prefix(identifier_type: str, identifier: str) -> str:
    return f"{RATE_LIMIT_WINDOW_PREFIX}{identifier_type}:{identifier}:"


def window_key(identifier_type: str, identifier: str, reflink_id: str | None) -> str:
    """One fixed-window counter per (identifier, type, reflink)."""
    return f"{window_prefix(identifier_type, identifier)}{reflink_id or NO_REFLINK}"
