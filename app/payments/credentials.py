"""
Encrypted storage for processor credentials.

Credentials are stored as a Fernet token (AES-128-CBC + HMAC-SHA256) in
PaymentProcessorConfig.encrypted_credentials and only decrypted inside an
adapter call. The decrypted value is a ProcessorCredentials mapping whose
repr masks every value, so an accidental log line or traceback never leaks
a key.

Usage:
    from payments.credentials import encrypt_credentials, decrypt_credentials

    token = encrypt_credentials({"secret_key": "sk_live_...", "webhook_secret": "whsec_..."})
    creds = decrypt_credentials(token)
    creds["secret_key"]   # plaintext, for the adapter only
    repr(creds)           # "ProcessorCredentials(secret_key=***, webhook_secret=***)"
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings

from core.exceptions import ValidationError
from payments.state_machines import ProcessorVariant

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


REQUIRED_CREDENTIAL_KEYS: dict[str, tuple[str, ...]] = {
    ProcessorVariant.STRIPE: ("secret_key", "webhook_secret"),
    ProcessorVariant.RAZORPAY: ("key_id", "key_secret", "webhook_secret"),
    ProcessorVariant.PHONEPE: ("merchant_id", "salt_key", "salt_index"),
    ProcessorVariant.PAYTM: ("merchant_id", "merchant_key"),
}


class CredentialDecryptionError(ValidationError):
    """Stored credentials could not be decrypted (wrong or rotated key)."""

    default_error_code: str = "CREDENTIAL_DECRYPTION_FAILED"


class ProcessorCredentials(Mapping):
    """
    Read-only mapping of decrypted credential values.

    Never serialize or log the values; repr/str only show the key names.
    """

    __slots__ = ("_values",)

    def __init__(self, values: dict[str, str]):
        self._values = dict(values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        masked = ", ".join(f"{key}=***" for key in sorted(self._values))
        return f"ProcessorCredentials({masked})"

    __str__ = __repr__


def _fernet() -> Fernet:
    key = settings.PAYMENT_CREDENTIALS_KEY
    if not key:
        # Development fallback: derive a stable key from SECRET_KEY
        digest = hashlib.sha256(f"payment-credentials:{settings.SECRET_KEY}".encode()).digest()
        key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def validate_credentials(variant: str, credentials: Mapping[str, str]) -> None:
    """
    Check that every key the variant's adapter needs is present and non-empty.

    Raises:
        ValidationError: Listing the missing keys (never the values)
    """
    required = REQUIRED_CREDENTIAL_KEYS.get(variant)
    if required is None:
        raise ValidationError(
            f"Unsupported processor variant: {variant}",
            error_code="UNSUPPORTED_PROCESSOR",
            details={"variant": variant},
        )

    missing = [key for key in required if not str(credentials.get(key) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing credentials for {variant}",
            error_code="MISSING_CREDENTIALS",
            details={"variant": variant, "missing": missing},
        )


def encrypt_credentials(credentials: Mapping[str, str]) -> str:
    """Encrypt a credentials dict into a Fernet token string."""
    payload = json.dumps({k: str(v) for k, v in credentials.items()}, sort_keys=True)
    return _fernet().encrypt(payload.encode()).decode()


def decrypt_credentials(token: str) -> ProcessorCredentials:
    """
    Decrypt a Fernet token produced by encrypt_credentials.

    Raises:
        CredentialDecryptionError: If the token is corrupt or the key changed
    """
    try:
        raw = _fernet().decrypt(token.encode())
    except (InvalidToken, ValueError) as e:
        logger.error(
            "Failed to decrypt processor credentials",
            extra={"error_type": type(e).__name__},
        )
        raise CredentialDecryptionError("Stored processor credentials cannot be decrypted") from e
    return ProcessorCredentials(json.loads(raw))


__all__ = [
    "REQUIRED_CREDENTIAL_KEYS",
    "CredentialDecryptionError",
    "ProcessorCredentials",
    "decrypt_credentials",
    "encrypt_credentials",
    "validate_credentials",
]
