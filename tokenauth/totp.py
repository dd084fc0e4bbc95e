"""
Time-based one-time passwords (RFC 6238) for the second login factor.

Compatible with Google Authenticator, Authy and other TOTP apps at the
defaults (SHA-1, 6 digits, 30 second period).

Features:
- Secret generation via pyotp, base32 grouped for transcription
- Code generation and validation with one step of clock skew each way
- otpauth:// provisioning URI and QR code PNG for enrollment

Codes are not single-use. A valid code can be replayed inside its
window unless the caller records the counter returned by
matching_counter() and refuses it the second time.
"""
import base64
import binascii
import hashlib
import logging
import math
import struct
import time
from datetime import datetime, timezone
from io import BytesIO
from typing import Callable, Optional, Union
from urllib.parse import quote

import pyotp
import qrcode

from core.errors import RandomSourceError, SecretDecodeError

from .config import (
    TOTP_ALGORITHM,
    TOTP_DIGITS,
    TOTP_ISSUER,
    TOTP_PERIOD,
    TOTP_SECRET_SIZE,
    TOTP_SKEW_STEPS,
)

logger = logging.getLogger(__name__)

Timestamp = Union[datetime, int, float]

DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}

# pyotp.random_base32 refuses anything shorter than 32 characters
MIN_SECRET_SIZE = 20


# =============================================================================
# HOTP truncation (RFC 4226 section 5.3)
# =============================================================================

def dynamic_truncate(digest: bytes) -> int:
    """31-bit value at the offset named by the last nibble of an HMAC digest."""
    offset = digest[-1] & 0x0F
    return struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF


def format_code(value: int, digits: int) -> str:
    """Reduce modulo 10^digits and left-pad with zeros."""
    return str(value % 10 ** digits).zfill(digits)


# =============================================================================
# Secret encoding
# =============================================================================

def clean_secret(secret: str) -> str:
    """Drop transcription spaces and padding, normalise case."""
    return "".join(secret.split()).upper().rstrip("=")


def decode_secret(secret: str) -> bytes:
    """Decode a (possibly space-grouped) unpadded base32 secret.

    Raises:
        SecretDecodeError: empty or not base32
    """
    if not isinstance(secret, str):
        raise SecretDecodeError("TOTP secret must be a string")
    cleaned = clean_secret(secret)
    if not cleaned:
        raise SecretDecodeError("TOTP secret is empty")
    try:
        return pyotp.TOTP(cleaned).byte_secret()
    except (binascii.Error, ValueError) as e:
        raise SecretDecodeError(f"TOTP secret is not valid base32: {e}") from e


def format_secret(secret: str) -> str:
    """Base32 without padding, a space every 4 characters."""
    cleaned = clean_secret(secret)
    return " ".join(cleaned[i:i + 4] for i in range(0, len(cleaned), 4))


def _unix_seconds(timestamp: Timestamp) -> int:
    if isinstance(timestamp, datetime):
        # Naive datetimes are UTC, never server-local time
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return math.floor(timestamp.timestamp())
    return math.floor(timestamp)


# =============================================================================
# TOTP manager
# =============================================================================

class TOTPManager:
    """Generates secrets and computes/validates TOTP codes. Stateless."""

    def __init__(
        self,
        secret_size: int = 20,
        digits: int = 6,
        period: int = 30,
        algorithm: str = "SHA1",
        skew_steps: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        algorithm = algorithm.upper()
        if algorithm not in DIGESTS:
            raise ValueError(f"unsupported TOTP algorithm: {algorithm}")
        if secret_size < MIN_SECRET_SIZE:
            raise ValueError(f"TOTP secrets must be at least {MIN_SECRET_SIZE} bytes")
        if period <= 0 or not 1 <= digits <= 10 or skew_steps < 0:
            raise ValueError("period must be positive, digits 1-10, skew_steps non-negative")

        self.secret_size = secret_size
        self.digits = digits
        self.period = period
        self.algorithm = algorithm
        self.skew_steps = skew_steps
        self._digest = DIGESTS[algorithm]
        self._clock = clock

    def _totp(self, secret: str) -> pyotp.TOTP:
        decode_secret(secret)
        return pyotp.TOTP(
            clean_secret(secret),
            digits=self.digits,
            digest=self._digest,
            interval=self.period,
        )

    def generate_secret(self) -> str:
        """Create a new random secret for enrollment.

        Raises:
            RandomSourceError: the OS random source is unavailable
        """
        length = math.ceil(self.secret_size * 8 / 5)
        try:
            secret = pyotp.random_base32(length=length)
        except (NotImplementedError, OSError) as e:
            raise RandomSourceError("secure random source unavailable for TOTP secret") from e
        return format_secret(secret)

    def counter_at(self, timestamp: Optional[Timestamp] = None) -> int:
        """Time-step counter for timestamp (default: now).

        Raises:
            ValueError: timestamp is before the Unix epoch
        """
        if timestamp is None:
            timestamp = self._clock()
        seconds = _unix_seconds(timestamp)
        if seconds < 0:
            raise ValueError(f"TOTP timestamp {seconds} is before the Unix epoch")
        return seconds // self.period

    def generate_totp(self, secret: str, timestamp: Optional[Timestamp] = None) -> str:
        """Code for the window containing timestamp (default: now).

        Raises:
            SecretDecodeError: secret is not valid base32
            ValueError: timestamp is before the Unix epoch
        """
        otp = self._totp(secret)
        return otp.generate_otp(self.counter_at(timestamp))

    def matching_counter(self, secret: str, code: str, timestamp: Optional[Timestamp] = None) -> Optional[int]:
        """Counter of the window that code matches, or None.

        Windows checked: current counter +/- skew_steps. Comparison is
        constant-time per window.
        """
        if not isinstance(code, str) or not code:
            return None
        try:
            otp = self._totp(secret)
        except SecretDecodeError as e:
            logger.debug(f"TOTP validation failed: {e}")
            return None

        current = self.counter_at(timestamp)
        matched = None
        for step in range(-self.skew_steps, self.skew_steps + 1):
            counter = current + step
            if counter < 0:
                continue
            if pyotp.utils.strings_equal(otp.generate_otp(counter), code) and matched is None:
                matched = counter
        return matched

    def validate_totp(self, secret: str, code: str, timestamp: Optional[Timestamp] = None) -> bool:
        """True if code matches any window within the skew tolerance."""
        return self.matching_counter(secret, code, timestamp) is not None

    def get_qr_code_url(self, secret: str, account_name: str, issuer: Optional[str] = None) -> str:
        """otpauth:// provisioning URI for authenticator apps.

        Always spells out algorithm, digits and period; pyotp's
        provisioning_uri() omits them at their defaults.
        """
        issuer = issuer or TOTP_ISSUER
        label_issuer = quote(issuer, safe="@")
        return (
            f"otpauth://totp/{label_issuer}:{quote(account_name, safe='@')}"
            f"?secret={clean_secret(secret)}"
            f"&issuer={label_issuer}"
            f"&algorithm={self.algorithm}"
            f"&digits={self.digits}"
            f"&period={self.period}"
        )

    def qr_code_data_uri(self, secret: str, account_name: str, issuer: Optional[str] = None) -> str:
        """Provisioning URI rendered as a base64 PNG data URI."""
        qr = qrcode.QRCode(version=1, box_size=10, border=5)
        qr.add_data(self.get_qr_code_url(secret, account_name, issuer))
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        qr_base64 = base64.b64encode(buffer.getvalue()).decode()

        return f"data:image/png;base64,{qr_base64}"


# Singleton instance
_totp_manager: Optional[TOTPManager] = None


def get_totp_manager() -> TOTPManager:
    """Get or create TOTPManager singleton from settings."""
    global _totp_manager
    if _totp_manager is None:
        _totp_manager = TOTPManager(
            secret_size=TOTP_SECRET_SIZE,
            digits=TOTP_DIGITS,
            period=TOTP_PERIOD,
            algorithm=TOTP_ALGORITHM,
            skew_steps=TOTP_SKEW_STEPS,
        )
    return _totp_manager
