import threading
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import respx
from freezegun import freeze_time
from pydantic import ValidationError

from docusign_implicit_sender.browser import WindowHandle
from docusign_implicit_sender.config import Settings
from docusign_implicit_sender.login import ImplicitLoginFlow, LoginOutcome, LoginState
from docusign_implicit_sender.models import OAuthCallbackAction, UnknownAction

IDP = "https://account-d.docusign.com"
BASE = "https://demo.docusign.net"
USERINFO = {
    "sub": "u1",
    "name": "Pat Signer",
    "email": "pat@example.com",
    "accounts": [
        {"account_id": "other", "account_name": "Sandbox", "base_uri": "https://demo2.docusign.net", "is_default": False},
        {"account_id": "acc", "account_name": "World Wide Corp", "base_uri": BASE, "is_default": True},
    ],
}


def _settings(**overrides) -> Settings:
    values = dict(idp_url=IDP, client_id="CLIENT_ID_12345", scheme_name="scheme")
    values.update(overrides)
    return Settings(**values)


def _callback(state: str, token: str = "abc123", expires_in: int = 28800) -> str:
    return f"scheme:/implicit-result#access_token={token}&expires_in={expires_in}&token_type=bearer&state={state}"


class FakeBrowser:
    def __init__(self):
        self.opened: list[str] = []
        self.closed: list[WindowHandle] = []

    def open(self, url: str) -> WindowHandle:
        self.opened.append(url)
        return WindowHandle(url=url)

    def close(self, handle: WindowHandle) -> None:
        handle.closed = True
        self.closed.append(handle)


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, level, message, **options):
        self.messages.append((level, message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


def _flow(http: httpx.Client, settings: Settings | None = None, fixed_state: str | None = None, monkeypatch=None):
    if fixed_state is not None:
        monkeypatch.setattr("docusign_implicit_sender.login.generate_state", lambda: fixed_state)
    received = []
    browser, notifier = FakeBrowser(), RecordingNotifier()
    flow = ImplicitLoginFlow(
        settings or _settings(),
        http=http,
        browser=browser,
        notifier=notifier,
        on_credential=received.append,
    )
    return flow, browser, notifier, received


def _mock_identity(external_status: int = 200):
    userinfo = respx.get(f"{IDP}/oauth/userinfo").respond(200, json=USERINFO)
    account = respx.get(f"{BASE}/restapi/v2.1/accounts/acc").respond(
        external_status, json={"externalAccountId": "18551234"}
    )
    return userinfo, account


def test_start_login_opens_system_browser_with_state():
    with httpx.Client() as http:
        flow, browser, _, _ = _flow(http)
        url = flow.start_login()

    assert browser.opened == [url]
    assert flow.state is LoginState.LOGIN_STARTED
    assert flow.browser_handle is not None
    q = parse_qs(urlsplit(url).query)
    assert q["state"] == [flow.pending_state]
    assert q["response_type"] == ["token"]


@freeze_time("2026-01-31T12:00:00Z")
@respx.mock
def test_matching_callback_resolves_identity(monkeypatch):
    userinfo, _ = _mock_identity()
    with httpx.Client() as http:
        flow, browser, notifier, received = _flow(http, fixed_state="xyz789", monkeypatch=monkeypatch)
        flow.start_login()
        credential = flow.handle_url(_callback("xyz789"))

    assert credential is not None
    assert received == [credential]
    assert userinfo.calls.last.request.headers["Authorization"] == "Bearer abc123"
    assert credential.access_token == "abc123"
    assert credential.account_id == "acc"
    assert credential.account_name == "World Wide Corp"
    assert credential.base_uri == BASE
    assert credential.external_account_id == "18551234"
    assert credential.display_name == "Pat Signer"
    assert credential.expires_at == datetime(2026, 1, 31, 12, tzinfo=timezone.utc) + timedelta(seconds=28800 - 600)
    assert flow.pending_state is None
    assert flow.state is LoginState.IDLE
    assert flow.last_outcome is LoginOutcome.VALIDATED
    assert len(browser.closed) == 1 and flow.browser_handle is None
    assert notifier.levels()[-1] == "success"


@freeze_time("2026-01-31T12:00:00Z")
@respx.mock
def test_expiry_always_leaves_a_buffer(monkeypatch):
    _mock_identity()
    now = datetime(2026, 1, 31, 12, tzinfo=timezone.utc)
    with httpx.Client() as http:
        flow, _, _, _ = _flow(http, fixed_state="s1", monkeypatch=monkeypatch)
        flow.start_login()
        credential = flow.handle_url(_callback("s1", expires_in=3600))
    assert credential.expires_at < now + timedelta(seconds=3600)
    assert credential.is_usable(now)
    assert not credential.is_usable(now + timedelta(seconds=3000))


@respx.mock(assert_all_called=False)
def test_state_mismatch_is_rejected_without_identity_call(monkeypatch):
    userinfo, _ = _mock_identity()
    with httpx.Client() as http:
        flow, browser, notifier, received = _flow(http, fixed_state="other", monkeypatch=monkeypatch)
        flow.start_login()
        credential = flow.handle_url(_callback("xyz789"))

    assert credential is None
    assert received == []
    assert userinfo.call_count == 0
    assert flow.pending_state is None
    assert flow.state is LoginState.IDLE
    assert flow.last_outcome is LoginOutcome.REJECTED
    assert len(browser.closed) == 1
    assert notifier.messages[-1][0] == "error"
    assert "security check" in notifier.messages[-1][1]


@respx.mock
def test_replayed_callback_is_rejected(monkeypatch):
    userinfo, _ = _mock_identity()
    with httpx.Client() as http:
        flow, _, _, received = _flow(http, fixed_state="xyz789", monkeypatch=monkeypatch)
        flow.start_login()
        assert flow.handle_url(_callback("xyz789")) is not None
        assert flow.handle_url(_callback("xyz789")) is None

    assert len(received) == 1
    assert userinfo.call_count == 1
    assert flow.last_outcome is LoginOutcome.REJECTED


@respx.mock(assert_all_called=False)
def test_callback_for_superseded_login_is_rejected():
    userinfo, _ = _mock_identity()
    with httpx.Client() as http:
        flow, browser, _, _ = _flow(http)
        flow.start_login()
        old_state = flow.pending_state
        flow.start_login()
        assert flow.pending_state != old_state
        assert flow.handle_url(_callback(old_state)) is None

    assert userinfo.call_count == 0
    # the first window was dropped when the second login started
    assert len(browser.opened) == 2
    assert len(browser.closed) == 2


def test_unrelated_actions_are_ignored():
    with httpx.Client() as http:
        flow, browser, notifier, _ = _flow(http)
        flow.start_login()
        pending = flow.pending_state
        assert flow.handle_redirect(UnknownAction(raw_url="scheme:/other")) is None
        assert flow.handle_url("scheme:/implicit-result#access_token=abc<script>&state=xyz") is None
        other = OAuthCallbackAction(action_name="other-path", access_token="t", state=pending, expires_in_seconds=1)
        assert flow.handle_redirect(other) is None

    assert flow.pending_state == pending
    assert flow.state is LoginState.LOGIN_STARTED
    assert flow.last_outcome is None
    assert browser.closed == []
    assert notifier.messages == []


def test_callback_without_login_is_rejected():
    with httpx.Client() as http:
        flow, _, notifier, _ = _flow(http)
        assert flow.handle_url(_callback("anything")) is None
    assert flow.last_outcome is LoginOutcome.REJECTED
    assert notifier.levels() == ["error"]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, text="unauthorized"),
        httpx.Response(200, json={"name": "Pat", "email": "p@example.com", "accounts": []}),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
@respx.mock
def test_identity_failures_emit_no_credential(monkeypatch, response):
    respx.get(f"{IDP}/oauth/userinfo").mock(return_value=response)
    with httpx.Client() as http:
        flow, _, notifier, received = _flow(http, fixed_state="s1", monkeypatch=monkeypatch)
        flow.start_login()
        assert flow.handle_url(_callback("s1")) is None

    assert received == []
    assert flow.last_outcome is LoginOutcome.FAILED
    assert flow.state is LoginState.IDLE
    assert notifier.messages[-1][0] == "error"
    assert "Problem while completing login" in notifier.messages[-1][1]


@respx.mock
def test_identity_transport_error(monkeypatch):
    respx.get(f"{IDP}/oauth/userinfo").mock(side_effect=httpx.ConnectError("dns"))
    with httpx.Client() as http:
        flow, _, notifier, received = _flow(http, fixed_state="s1", monkeypatch=monkeypatch)
        flow.start_login()
        assert flow.handle_url(_callback("s1")) is None
    assert received == []
    assert flow.last_outcome is LoginOutcome.FAILED


@respx.mock
def test_external_account_lookup_failure_is_cosmetic(monkeypatch):
    _mock_identity(external_status=503)
    with httpx.Client() as http:
        flow, _, _, received = _flow(http, fixed_state="s1", monkeypatch=monkeypatch)
        flow.start_login()
        credential = flow.handle_url(_callback("s1"))
    assert credential is not None
    assert credential.external_account_id is None
    assert received == [credential]


def test_cancel_login_is_idempotent():
    with httpx.Client() as http:
        flow, browser, _, _ = _flow(http)
        flow.start_login()
        flow.cancel_login()
        flow.cancel_login()
    assert flow.pending_state is None
    assert flow.browser_handle is None
    assert flow.state is LoginState.IDLE
    assert len(browser.closed) == 1


@respx.mock
def test_development_token_skips_the_browser():
    userinfo, _ = _mock_identity()
    s = _settings(environment="development", dev_access_token="devtoken123")
    with httpx.Client() as http:
        flow, browser, _, received = _flow(http, settings=s)
        flow.start_login()
    assert browser.opened == []
    assert len(received) == 1
    assert received[0].access_token == "devtoken123"
    assert userinfo.calls.last.request.headers["Authorization"] == "Bearer devtoken123"


def test_development_token_ignored_in_production():
    s = _settings(environment="production", dev_access_token="devtoken123")
    with httpx.Client() as http:
        flow, browser, _, received = _flow(http, settings=s)
        flow.start_login()
    assert len(browser.opened) == 1
    assert received == []


@respx.mock(assert_all_called=False)
def test_oversized_lifetime_never_reaches_expiry_math(monkeypatch):
    userinfo, _ = _mock_identity()
    with httpx.Client() as http:
        flow, _, _, received = _flow(http, fixed_state="xyz", monkeypatch=monkeypatch)
        flow.start_login()
        credential = flow.handle_url(_callback("xyz", expires_in=10**30 - 1))

    assert credential is None
    assert received == []
    assert userinfo.call_count == 0
    # still waiting for a well-formed callback
    assert flow.pending_state == "xyz"
    assert flow.state is LoginState.LOGIN_STARTED


def test_callback_action_bounds_lifetime():
    with pytest.raises(ValidationError):
        OAuthCallbackAction(action_name="implicit-result", access_token="t", state="s", expires_in_seconds=10**30)


@respx.mock
def test_credential_callback_runs_outside_the_session_lock(monkeypatch):
    _mock_identity()
    monkeypatch.setattr("docusign_implicit_sender.login.generate_state", lambda: "xyz")
    unlocked = []

    def on_credential(credential):
        other = threading.Thread(target=flow.cancel_login)
        other.start()
        other.join(timeout=5)
        unlocked.append(not other.is_alive())
        raise RuntimeError("listener failed")

    with httpx.Client() as http:
        flow = ImplicitLoginFlow(_settings(), http=http, browser=FakeBrowser(), notifier=RecordingNotifier(), on_credential=on_credential)
        flow.start_login()
        with pytest.raises(RuntimeError, match="listener failed"):
            flow.handle_url(_callback("xyz"))

    assert unlocked == [True]
    assert flow.last_outcome is LoginOutcome.VALIDATED
