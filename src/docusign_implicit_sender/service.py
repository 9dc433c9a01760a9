from __future__ import annotations

import base64
import logging
import re
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from .assets import AssetResolver
from .client import ApiContext, DocuSignClient
from .config import Settings
from .models import (
    CreatedEnvelope,
    Credential,
    DocumentRef,
    EnvelopeFailure,
    EnvelopeResult,
    EnvelopeSuccess,
    Recipient,
)
from .util import rate_limit_from_headers

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Networking error: check your Internet and DNS connections"
SIGN_HERE_ANCHOR = "/sn1/"
_MIN_FIELD_LEN = 5
_COUNTRY_CODE = re.compile(r"^[0-9]{1,3}$")
_SMS_NUMBER = re.compile(r"^[0-9]{4,}$")


class PreconditionError(ValueError):
    """Caller-side problems detected before any network call."""

    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems))
        self.problems = problems


def normalize_phone_digits(value: str) -> str:
    return re.sub(r"[\s\-+().]", "", value or "")


def check_send_preconditions(
    credential: Optional[Credential], recipient: Recipient, now: Optional[datetime] = None
) -> None:
    problems: list[str] = []
    if credential is None or not credential.is_usable(now):
        problems.append("Your login session has ended.\nPlease login again")
    if len(recipient.email.strip()) < _MIN_FIELD_LEN:
        problems.append("Problem: Enter the signer's email address")
    if len(recipient.name.strip()) < _MIN_FIELD_LEN:
        problems.append("Problem: Enter the signer's name")
    if not _COUNTRY_CODE.match(normalize_phone_digits(recipient.sms_country_code)):
        problems.append("Problem: Enter the signer's SMS country code")
    if not _SMS_NUMBER.match(normalize_phone_digits(recipient.sms_number)):
        problems.append("Problem: Enter the signer's phone number")
    if problems:
        raise PreconditionError(problems)


def build_envelope_definition(
    document: DocumentRef, document_b64: str, recipient: Recipient, subject: str
) -> dict[str, Any]:
    """One SMS-notified signer, one responsive document, sent immediately."""
    return {
        "emailSubject": subject,
        "status": "sent",
        "recipients": {
            "signers": [
                {
                    "email": recipient.email,
                    "name": recipient.name,
                    "recipientId": "1",
                    "additionalNotifications": [
                        {
                            "secondaryDeliveryMethod": "SMS",
                            "phoneNumber": {
                                "countryCode": normalize_phone_digits(recipient.sms_country_code),
                                "number": normalize_phone_digits(recipient.sms_number),
                            },
                        }
                    ],
                    "tabs": {
                        "signHereTabs": [
                            {"anchorString": SIGN_HERE_ANCHOR, "anchorXOffset": "20", "anchorUnits": "pixels"}
                        ]
                    },
                }
            ]
        },
        "documents": [
            {
                "name": document.name,
                "fileExtension": document.extension,
                "documentId": "1",
                "documentBase64": document_b64,
                "htmlDefinition": {"source": "document"},
            }
        ],
    }


class EnvelopeService:
    """Sends a signing request with the bundled document and reports API diagnostics."""

    def __init__(self, settings: Settings, http: httpx.Client, assets: Optional[AssetResolver] = None):
        self.settings = settings
        self._http = http
        self._assets = assets or AssetResolver(settings.app_path)

    def default_document(self) -> DocumentRef:
        return DocumentRef(
            file_name=self.settings.document_file_name,
            name=self.settings.document_name,
            extension=self.settings.document_extension,
        )

    def submit_envelope(
        self,
        credential: Optional[Credential],
        recipient: Recipient,
        subject: Optional[str] = None,
        document: Optional[DocumentRef] = None,
    ) -> EnvelopeResult:
        """Check caller preconditions, then :meth:`submit`. Raises ``PreconditionError``."""
        check_send_preconditions(credential, recipient)
        return self.submit(
            base_uri=credential.base_uri,
            account_id=credential.account_id,
            access_token=credential.access_token,
            document=document or self.default_document(),
            recipient=recipient,
            subject=subject or self.settings.email_subject,
        )

    def submit(
        self,
        base_uri: str,
        account_id: str,
        access_token: str,
        document: DocumentRef,
        recipient: Recipient,
        subject: str,
    ) -> EnvelopeResult:
        doc_path = self._assets.locate(document.file_name)
        if doc_path is None:
            return EnvelopeFailure(
                error_message=f"Could not locate document file. [app_path: {self._assets.base_path}]"
            )
        try:
            document_b64 = base64.b64encode(doc_path.read_bytes()).decode("ascii")
        except OSError as e:
            return EnvelopeFailure(error_message=f"Could not read document file {doc_path.name}: {e}")

        definition = build_envelope_definition(document, document_b64, recipient, subject)
        api = DocuSignClient(
            http=self._http,
            ctx=ApiContext(base_uri=base_uri, account_id=account_id),
            access_token=access_token,
            sdk_id=self.settings.sdk_id,
        )
        try:
            resp = api.create_envelope(definition)
        except httpx.TransportError as e:
            # Covers DNS, connection and timeout failures; no response exists.
            logger.warning("Envelope submission failed before a response: %s", e)
            return EnvelopeFailure(error_message=f"{NETWORK_ERROR_MESSAGE} ({type(e).__name__})")

        diagnostics = rate_limit_from_headers(resp.headers).model_dump()
        if not resp.is_success:
            logger.info("Envelope rejected (%s), trace id %s", resp.status_code, diagnostics["trace_id"])
            return EnvelopeFailure(error_message=resp.text or f"HTTP {resp.status_code}", **diagnostics)

        try:
            created = CreatedEnvelope.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            return EnvelopeFailure(error_message=f"Unexpected envelope response: {e}", **diagnostics)
        logger.info("Envelope %s sent, trace id %s", created.envelope_id, diagnostics["trace_id"])
        return EnvelopeSuccess(envelope_id=created.envelope_id, **diagnostics)
