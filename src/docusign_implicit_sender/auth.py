from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib.parse import quote, urlencode

import httpx
from pydantic import ValidationError

from .client import ApiContext, ApiError, DocuSignClient
from .config import Settings
from .models import AccountDetails, UserInfo, UserInfoAccount

logger = logging.getLogger(__name__)


class AuthError(RuntimeError):
    pass


class AccountSelectionError(AuthError):
    pass


def generate_state(num_bytes: int = 20) -> str:
    """Opaque CSRF token, hex encoded (40 characters for the default size)."""
    return secrets.token_hex(num_bytes)


def direct_redirect_uri(settings: Settings) -> str:
    # One slash (no authority) is what RFC 8252 sec 7.1 recommends, not every IdP accepts it
    slashes = "/" if settings.scheme_slash_count == 1 else "//"
    return f"{settings.scheme_name}:{slashes}{settings.return_path}"


def build_authorization_url(settings: Settings, state: str) -> str:
    """Implicit grant authorization URL for the system browser."""
    redirect_uri = str(settings.redirect_url) if settings.redirect_url else direct_redirect_uri(settings)
    params = {
        "response_type": "token",
        "scope": settings.scopes,
        "client_id": settings.client_id,
        "state": state,
        "redirect_uri": redirect_uri,
    }
    return f"{settings.idp_base()}/oauth/auth?{urlencode(params, quote_via=quote)}"


def fetch_userinfo(settings: Settings, client: httpx.Client, access_token: str) -> UserInfo:
    """Call /oauth/userinfo. Transport errors propagate as ``httpx.HTTPError``."""
    url = f"{settings.idp_base()}/oauth/userinfo"
    resp = client.get(
        url,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "X-DocuSign-SDK": settings.sdk_id,
        },
    )
    if not resp.is_success:
        raise AuthError(f"Userinfo request failed ({resp.status_code}): {resp.reason_phrase}")
    try:
        return UserInfo.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        raise AuthError(f"Unexpected /oauth/userinfo response: {e}") from e


def select_default_account(user_info: UserInfo) -> UserInfoAccount:
    """Exactly one account must carry ``is_default``; anything else is a setup problem."""
    defaults = [a for a in user_info.accounts if a.is_default]
    if len(defaults) != 1:
        raise AccountSelectionError(
            f"Expected exactly one default account, found {len(defaults)} "
            f"(of {len(user_info.accounts)} accounts)"
        )
    return defaults[0]


def fetch_external_account_id(
    settings: Settings, client: httpx.Client, access_token: str, account: UserInfoAccount
) -> Optional[str]:
    """Best effort: the external account id is only shown to the user."""
    api = DocuSignClient(
        http=client,
        ctx=ApiContext(base_uri=account.base_uri, account_id=account.account_id),
        access_token=access_token,
        sdk_id=settings.sdk_id,
    )
    try:
        return AccountDetails.model_validate(api.get_account()).external_account_id
    except (httpx.HTTPError, ApiError, ValueError, ValidationError) as e:
        logger.warning("Could not look up external account id for %s: %s", account.account_id, e)
        return None
