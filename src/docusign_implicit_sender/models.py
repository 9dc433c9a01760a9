from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Characters allowed in an OAuth fragment delivered through the custom scheme.
FRAGMENT_CHARS = r"#.\-&=_a-zA-Z0-9"
# Upper bound for a reported token lifetime (30 days); implicit grant tokens last 8 hours.
MAX_EXPIRES_IN_SECONDS = 30 * 24 * 60 * 60


class UnknownAction(BaseModel):
    kind: Literal["unknown"] = "unknown"
    raw_url: str


class OAuthCallbackAction(BaseModel):
    kind: Literal["oauth_callback"] = "oauth_callback"
    action_name: str
    access_token: str = Field(..., min_length=1, pattern=f"^[{FRAGMENT_CHARS}]+$")
    state: str = Field(..., min_length=1, pattern=f"^[{FRAGMENT_CHARS}]+$")
    expires_in_seconds: int = Field(..., ge=0, le=MAX_EXPIRES_IN_SECONDS)


RedirectAction = Annotated[Union[UnknownAction, OAuthCallbackAction], Field(discriminator="kind")]


class UserInfoAccount(BaseModel):
    """One entry of the /oauth/userinfo ``accounts`` list."""

    account_id: str
    account_name: str
    base_uri: str
    is_default: bool


class UserInfo(BaseModel):
    name: str
    email: str
    accounts: list[UserInfoAccount] = Field(default_factory=list)


class AccountDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_account_id: Optional[str] = Field(None, alias="externalAccountId")


class Credential(BaseModel):
    """Authenticated session handed to the caller once login completes."""

    access_token: str
    expires_at: datetime
    display_name: str
    email: str
    account_id: str
    external_account_id: Optional[str] = None
    account_name: str
    base_uri: str

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(tz=timezone.utc)
        return now < self.expires_at


class Recipient(BaseModel):
    email: str
    name: str
    sms_country_code: str
    sms_number: str


class DocumentRef(BaseModel):
    file_name: str
    name: str
    extension: str


class CreatedEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    envelope_id: str = Field(..., alias="envelopeId", min_length=1)
    status: Optional[str] = None
    uri: Optional[str] = None
    status_date_time: Optional[str] = Field(None, alias="statusDateTime")


class RateLimitInfo(BaseModel):
    available_api_requests: Optional[int] = None
    api_requests_reset_at: Optional[datetime] = None
    trace_id: Optional[str] = None


class EnvelopeSuccess(RateLimitInfo):
    outcome: Literal["success"] = "success"
    envelope_id: str

    @property
    def success(self) -> bool:
        return True


class EnvelopeFailure(RateLimitInfo):
    outcome: Literal["failure"] = "failure"
    error_message: str

    @property
    def success(self) -> bool:
        return False


EnvelopeResult = Annotated[Union[EnvelopeSuccess, EnvelopeFailure], Field(discriminator="outcome")]
