from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import FRAGMENT_CHARS

_PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables.

    The identity provider, client id and URL scheme are required (no defaults)
    since they are tied to the integration's registration with DocuSign.
    """

    model_config = SettingsConfigDict(env_prefix="DS_", case_sensitive=False)

    idp_url: AnyHttpUrl = Field(
        ...,
        description="DocuSign OAuth base URL (demo: https://account-d.docusign.com, prod: https://account.docusign.com)",
    )
    client_id: str = Field(..., min_length=10, description="Implicit grant integration key (client_id)")
    scopes: str = Field("signature", description="OAuth scopes (space-separated)")

    scheme_name: str = Field(..., min_length=1, description="Custom URL scheme registered with the OS")
    scheme_slash_count: Literal[1, 2] = Field(1, description="1 -> scheme:/path (RFC 8252), 2 -> scheme://path")
    return_path: str = Field("implicit-result", min_length=1, description="Path/host token of the redirect URI")
    redirect_url: Optional[AnyHttpUrl] = Field(
        None,
        description="Optional intermediate HTTPS page that forwards to the custom scheme",
    )

    environment: Literal["production", "development"] = Field("production")
    dev_access_token: Optional[str] = Field(
        None,
        pattern=f"^[{FRAGMENT_CHARS}]+$",
        description="Static access token used instead of a browser login. Ignored in production.",
    )
    expiration_buffer_s: int = Field(600, ge=1, le=3600, description="Seconds shaved off the token lifetime")

    sdk_id: str = Field("python-implicit1", description="Value of the X-DocuSign-SDK request header")
    http_timeout_s: float = Field(30.0, ge=1.0, le=300.0, description="HTTP timeout (seconds)")

    app_path: Path = Field(_PACKAGE_DIR, description="Install location used as the base for asset lookup")
    document_file_name: str = Field("World_Wide_Corp_lorem.pdf", min_length=1)
    document_name: str = Field("Example document.pdf", min_length=1)
    document_extension: str = Field("pdf", min_length=1)
    email_subject: str = Field("Please sign the attached document", min_length=1)

    credential_path: Path = Field(
        Path("~/.docusign-implicit-sender/credential.json"),
        description="Where the CLI caches the credential between commands",
    )
    geo_ip_url: str = Field(
        "http://ipwhois.app/json/?objects=country_phone",
        description="Geolocation endpoint for the default SMS country code (empty disables)",
    )
    log_level: str = Field("INFO")

    @property
    def dev_bypass_enabled(self) -> bool:
        return self.environment == "development" and bool(self.dev_access_token)

    def idp_base(self) -> str:
        return str(self.idp_url).rstrip("/")

    def resolved_credential_path(self) -> Path:
        return self.credential_path.expanduser().resolve()
