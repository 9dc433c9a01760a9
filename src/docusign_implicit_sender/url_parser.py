from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from .models import (
    FRAGMENT_CHARS,
    MAX_EXPIRES_IN_SECONDS,
    OAuthCallbackAction,
    RedirectAction,
    UnknownAction,
)

logger = logging.getLogger(__name__)

_TOKEN_MARKER = "#access_token="
_DISALLOWED = re.compile(f"[^{FRAGMENT_CHARS}]")
# urlsplit silently strips these, so they must be rejected on the raw text
_STRIPPED_BY_URLSPLIT = re.compile(r"[\t\r\n]")
# Fixed field order used by the DocuSign IdP; only safe after the _DISALLOWED check.
_FIELDS = re.compile(r"#access_token=(.*)&expires_in=(.*)&token_type=(.*)&state=(.*)")
_MAX_EXPIRES_IN_DIGITS = len(str(MAX_EXPIRES_IN_SECONDS))


def _matches_return_path(path: str, host: str, return_path: str) -> bool:
    # scheme:/implicit-result populates the path, scheme://implicit-result the host
    needle = return_path.lower()
    if path and needle in path.lower():
        return True
    return bool(host) and needle in host.lower()


def _log_injection(bad: re.Match) -> None:
    # the URL carries a token, log only where it went wrong
    logger.error(
        "Potential injection attack via fragment (#) value: %r at offset %d",
        bad.group(),
        bad.start(),
    )


def parse_app_url(raw_url: str, return_path: str) -> RedirectAction:
    """Turn a raw callback URL into a typed action. Never raises."""
    unknown = UnknownAction(raw_url=raw_url)
    control = _STRIPPED_BY_URLSPLIT.search(raw_url)
    if control:
        _log_injection(control)
        return unknown
    try:
        parts = urlsplit(raw_url)
        host = parts.hostname or ""
    except ValueError:
        return unknown
    path = parts.path
    if not path and not host:
        return unknown
    if not return_path or not _matches_return_path(path, host, return_path):
        return unknown

    fragment = f"#{parts.fragment}" if parts.fragment else ""
    if not fragment.startswith(_TOKEN_MARKER):
        return unknown
    bad = _DISALLOWED.search(fragment)
    if bad:
        _log_injection(bad)
        return unknown

    m = _FIELDS.match(fragment)
    if m is None:
        return unknown
    access_token, expires_in, _token_type, state = m.groups()
    if not access_token or not state or not expires_in.isdigit():
        return unknown
    if len(expires_in) > _MAX_EXPIRES_IN_DIGITS or int(expires_in) > MAX_EXPIRES_IN_SECONDS:
        logger.error("Rejected OAuth callback: expires_in out of range")
        return unknown

    return OAuthCallbackAction(
        action_name=return_path,
        access_token=access_token,
        state=state,
        expires_in_seconds=int(expires_in),
    )
