from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import typer

from .browser import SystemBrowser, WindowHandle
from .config import Settings
from .geo import CountryCodeLookup
from .logging_config import configure_logging
from .login import ImplicitLoginFlow
from .models import Credential, EnvelopeSuccess, Recipient
from .notifications import NotificationLevel
from .service import EnvelopeService, PreconditionError
from .store import CredentialStore
from .url_parser import parse_app_url

app = typer.Typer(no_args_is_help=True, add_completion=False)


class EchoNotifier:
    def notify(self, level: NotificationLevel, message: str, **options: Any) -> None:
        prefix = {"success": "OK", "error": "ERROR", "info": "..."}.get(level, "")
        typer.echo(f"{prefix} {message.replace(chr(10), ' ')}", err=True)


class PrintOnlyBrowser:
    """Leaves opening the URL to the user (headless machines, --no-browser)."""

    def open(self, url: str) -> Optional[WindowHandle]:
        return None

    def close(self, handle: WindowHandle) -> None:
        handle.closed = True


def _load_settings() -> Settings:
    try:
        settings = Settings()
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)
    configure_logging(settings.log_level)
    return settings


def _http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(timeout=httpx.Timeout(settings.http_timeout_s))


def _credential_summary(credential: Credential) -> dict[str, Any]:
    return {
        "name": credential.display_name,
        "email": credential.email,
        "account_id": credential.account_id,
        "external_account_id": credential.external_account_id,
        "account_name": credential.account_name,
        "base_uri": credential.base_uri,
        "expires_at": credential.expires_at.isoformat(),
        "usable": credential.is_usable(),
    }


@app.command()
def login(
        no_browser: bool = typer.Option(False, "--no-browser", help="Print the login URL instead of opening a browser"),
) -> None:
    """Log in with the OAuth implicit grant and cache the credential."""
    settings = _load_settings()
    store = CredentialStore(settings.resolved_credential_path())
    received: list[Credential] = []

    with _http_client(settings) as http:
        flow = ImplicitLoginFlow(
            settings,
            http=http,
            browser=PrintOnlyBrowser() if no_browser else SystemBrowser(),
            notifier=EchoNotifier(),
            on_credential=received.append,
        )
        url = flow.start_login()
        if not received and flow.last_outcome is None:
            typer.echo(f"Open this URL to log in:\n{url}\n", err=True)
            try:
                raw_url = typer.prompt("Paste the URL the browser redirected to", default="", show_default=False)
            except typer.Abort:
                raw_url = ""
            if not raw_url.strip():
                flow.cancel_login()
                typer.echo("Login cancelled.", err=True)
                raise typer.Exit(code=1)
            if flow.handle_url(raw_url.strip()) is None and flow.last_outcome is None:
                flow.cancel_login()
                typer.echo("That is not a login redirect URL.", err=True)

    if not received:
        raise typer.Exit(code=1)
    path = store.save(received[0])
    summary = _credential_summary(received[0])
    summary["credential_path"] = str(path)
    typer.echo(json.dumps(summary, indent=2))


@app.command()
def send(
        name: str = typer.Option(..., help="Signer's full name"),
        email: str = typer.Option(..., help="Signer's email address"),
        sms_number: str = typer.Option(..., help="Signer's mobile number (national format, digits)"),
        sms_country_code: Optional[str] = typer.Option(
            None, help="Calling code without '+', e.g. 1 or 44. Defaults to the IP geolocation guess."
        ),
        subject: Optional[str] = typer.Option(None, help="Email subject (defaults to DS_EMAIL_SUBJECT)"),
) -> None:
    """Send the bundled document for signature with SMS delivery."""
    settings = _load_settings()
    lookup = None
    if sms_country_code is None:
        lookup = CountryCodeLookup(settings.geo_ip_url).start()
    credential = CredentialStore(settings.resolved_credential_path()).load()
    if lookup is not None:
        sms_country_code = lookup.result() or ""

    recipient = Recipient(email=email, name=name, sms_country_code=sms_country_code, sms_number=sms_number)
    with _http_client(settings) as http:
        svc = EnvelopeService(settings, http)
        try:
            result = svc.submit_envelope(credential, recipient, subject=subject)
        except PreconditionError as e:
            for problem in e.problems:
                typer.echo(problem.replace("\n", " "), err=True)
            raise typer.Exit(code=2)

    reset_at = result.api_requests_reset_at
    summary = {
        "success": result.success,
        "envelope_id": result.envelope_id if isinstance(result, EnvelopeSuccess) else None,
        "error_message": None if isinstance(result, EnvelopeSuccess) else result.error_message,
        "available_api_requests": result.available_api_requests,
        "api_requests_reset_at": reset_at.isoformat() if reset_at else None,
        "trace_id": result.trace_id,
    }
    typer.echo(json.dumps(summary, indent=2))
    if not result.success:
        if result.trace_id:
            typer.echo(f"Trace ID: {result.trace_id}. Please include with all customer service questions.", err=True)
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show the cached login, without the access token."""
    settings = _load_settings()
    credential = CredentialStore(settings.resolved_credential_path()).load()
    if credential is None:
        typer.echo("Not logged in.", err=True)
        raise typer.Exit(code=1)
    summary = _credential_summary(credential)
    summary["checked_at"] = datetime.now(tz=timezone.utc).isoformat()
    typer.echo(json.dumps(summary, indent=2))
    if not summary["usable"]:
        raise typer.Exit(code=1)


@app.command()
def logout() -> None:
    """Forget the cached credential. The IdP's own browser session is not touched."""
    settings = _load_settings()
    removed = CredentialStore(settings.resolved_credential_path()).clear()
    typer.echo("You have logged out." if removed else "No cached login.")


@app.command("parse-url")
def parse_url(raw_url: str = typer.Argument(..., help="URL as delivered to the custom scheme handler")) -> None:
    """Show how a redirect URL is interpreted (for checking the scheme registration)."""
    settings = _load_settings()
    action = parse_app_url(raw_url, settings.return_path)
    typer.echo(action.model_dump_json(indent=2, exclude={"access_token"}))


def main() -> None:
    app()


if __name__ == "__main__":
    sys.exit(main())
