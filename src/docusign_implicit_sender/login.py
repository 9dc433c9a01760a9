from __future__ import annotations

import enum
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from .auth import (
    AuthError,
    build_authorization_url,
    fetch_external_account_id,
    fetch_userinfo,
    generate_state,
    select_default_account,
)
from .browser import BrowserLauncher, WindowHandle
from .config import Settings
from .models import Credential, OAuthCallbackAction, RedirectAction
from .notifications import LoggingNotifier, Notifier
from .url_parser import parse_app_url

logger = logging.getLogger(__name__)

# Lifetime the IdP reports for implicit grant tokens; used by the development bypass.
DEV_TOKEN_EXPIRES_IN = 8 * 60 * 60


class LoginState(enum.Enum):
    IDLE = "idle"
    LOGIN_STARTED = "login_started"


class LoginOutcome(enum.Enum):
    VALIDATED = "validated"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class OAuthSession:
    pending_state: Optional[str] = None
    browser_handle: Optional[WindowHandle] = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class ImplicitLoginFlow:
    """Owns the login session: pending CSRF state and the browser window reference."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.Client,
        browser: BrowserLauncher,
        notifier: Optional[Notifier] = None,
        on_credential: Optional[Callable[[Credential], None]] = None,
    ):
        self.settings = settings
        self._http = http
        self._browser = browser
        self._notifier = notifier or LoggingNotifier()
        self._on_credential = on_credential
        self._session = OAuthSession()
        # re-entrant: close_window also runs with the lock held
        self._lock = threading.RLock()
        self.state = LoginState.IDLE
        self.last_outcome: Optional[LoginOutcome] = None

    @property
    def pending_state(self) -> Optional[str]:
        return self._session.pending_state

    @property
    def browser_handle(self) -> Optional[WindowHandle]:
        return self._session.browser_handle

    def start_login(self) -> str:
        """Begin a login attempt and return the authorization URL.

        A newer attempt overwrites the pending state, so late callbacks from
        older attempts fail the state check.
        """
        credential = None
        with self._lock:
            oauth_state = generate_state()
            self._session.pending_state = oauth_state
            url = build_authorization_url(self.settings, oauth_state)
            self.close_window()
            self.state = LoginState.LOGIN_STARTED

            if self.settings.dev_bypass_enabled:
                logger.warning("Development mode: using the configured access token instead of a browser login")
                credential = self._handle_redirect(
                    OAuthCallbackAction(
                        action_name=self.settings.return_path,
                        access_token=self.settings.dev_access_token,
                        state=oauth_state,
                        expires_in_seconds=DEV_TOKEN_EXPIRES_IN,
                    )
                )
            else:
                self._session.browser_handle = self._browser.open(url)
                logger.info("Login started; waiting for the %s redirect", self.settings.return_path)
        self._deliver(credential)
        return url

    def handle_url(self, raw_url: str) -> Optional[Credential]:
        """Entry point for URLs delivered by the OS to the custom scheme."""
        return self.handle_redirect(parse_app_url(raw_url, self.settings.return_path))

    def handle_redirect(self, action: RedirectAction) -> Optional[Credential]:
        with self._lock:
            credential = self._handle_redirect(action)
        return self._deliver(credential)

    def resolve_identity(self, access_token: str, expires_at: datetime) -> Optional[Credential]:
        with self._lock:
            credential = self._resolve_identity(access_token, expires_at)
        return self._deliver(credential)

    def _handle_redirect(self, action: RedirectAction) -> Optional[Credential]:
        if not isinstance(action, OAuthCallbackAction) or action.action_name != self.settings.return_path:
            return None

        self.close_window()
        expected = self._session.pending_state
        self._session.pending_state = None
        if expected is None or not secrets.compare_digest(expected, action.state):
            logger.warning("Rejected OAuth callback: state does not match the pending login")
            self._finish(LoginOutcome.REJECTED)
            self._notifier.notify(
                "error",
                "The OAuth response failed the security check.\nPlease retry.",
                auto_close_s=10,
            )
            return None

        # expire the token early so it is never used in its last moments
        lifetime = action.expires_in_seconds - self.settings.expiration_buffer_s
        expires_at = _now() + timedelta(seconds=lifetime)
        return self._resolve_identity(action.access_token, expires_at)

    def _resolve_identity(self, access_token: str, expires_at: datetime) -> Optional[Credential]:
        self._notifier.notify("info", "Completing the login process...", auto_close_s=7)
        try:
            user_info = fetch_userinfo(self.settings, self._http, access_token)
            account = select_default_account(user_info)
        except (httpx.HTTPError, AuthError) as e:
            logger.error("Login failed while resolving the user: %s", e)
            self._finish(LoginOutcome.FAILED)
            self._notifier.notify(
                "error",
                f"Problem while completing login.\nPlease retry.\nError: {e}",
                auto_close_s=10,
            )
            return None

        external_account_id = fetch_external_account_id(self.settings, self._http, access_token, account)
        credential = Credential(
            access_token=access_token,
            expires_at=expires_at,
            display_name=user_info.name,
            email=user_info.email,
            account_id=account.account_id,
            external_account_id=external_account_id,
            account_name=account.account_name,
            base_uri=account.base_uri,
        )
        self._finish(LoginOutcome.VALIDATED)
        logger.info("Logged in as %s (account %s)", credential.email, credential.account_id)
        self._notifier.notify("success", f"Welcome {credential.display_name}, you are now logged in")
        return credential

    def _deliver(self, credential: Optional[Credential]) -> Optional[Credential]:
        # runs after the session lock is released; errors from on_credential reach the caller
        if credential is not None and self._on_credential is not None:
            self._on_credential(credential)
        return credential

    def cancel_login(self) -> None:
        with self._lock:
            self._session.pending_state = None
            self.close_window()
            self.state = LoginState.IDLE

    def close_window(self) -> None:
        with self._lock:
            handle = self._session.browser_handle
            if handle is None:
                return
            self._session.browser_handle = None
            self._browser.close(handle)

    def _finish(self, outcome: LoginOutcome) -> None:
        self.last_outcome = outcome
        self.state = LoginState.IDLE
