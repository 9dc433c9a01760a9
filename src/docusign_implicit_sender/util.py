from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping, Optional

from .models import RateLimitInfo

logger = logging.getLogger(__name__)

RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
RATE_LIMIT_RESET = "X-RateLimit-Reset"
TRACE_TOKEN = "X-DocuSign-TraceToken"


def parse_int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip(), 10)
    except ValueError:
        logger.debug("Ignoring non-integer %s header: %r", name, value)
        return None


def epoch_to_datetime(seconds: Optional[int]) -> Optional[datetime]:
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.debug("Ignoring out-of-range epoch value: %r", seconds)
        return None


def rate_limit_from_headers(headers: Mapping[str, str]) -> RateLimitInfo:
    """Rate-limit and trace diagnostics; present on successful and failed calls alike."""
    return RateLimitInfo(
        available_api_requests=parse_int_header(headers, RATE_LIMIT_REMAINING),
        api_requests_reset_at=epoch_to_datetime(parse_int_header(headers, RATE_LIMIT_RESET)),
        trace_id=headers.get(TRACE_TOKEN) or None,
    )
