"""
Tests for TOTP second-factor codes.

Vectors come from RFC 4226 Appendix D (HOTP) and RFC 6238 Appendix B
(TOTP). Codes for arbitrary secrets are cross-checked against pyotp.

Run with: pytest tests/test_totp.py -v
"""
import base64
import os
import sys
from datetime import datetime, timezone

import pyotp
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import RandomSourceError, SecretDecodeError
from tokenauth.totp import (
    TOTPManager,
    decode_secret,
    dynamic_truncate,
    format_code,
    format_secret,
)

from conftest import RFC_SECRET


# =============================================================================
# HOTP truncation and RFC 4226 vectors
# =============================================================================

class TestHOTP:
    """RFC 4226 building blocks."""

    def test_truncation_rfc_example(self):
        """RFC 4226 section 5.4 worked example."""
        digest = bytes.fromhex("1f8698690e02ca16618550ef7f19da8e945b555a")
        assert dynamic_truncate(digest) == 0x50EF7F19
        assert format_code(dynamic_truncate(digest), 6) == "872921"

    def test_truncation_max_offset(self):
        """Last nibble 0xf reads bytes 15..18 of a 20-byte digest."""
        digest = bytes(15) + b"\xff\xff\xff\xff" + b"\x0f"
        assert dynamic_truncate(digest) == 0x7FFFFFFF

    @pytest.mark.parametrize("hmac_hex,truncated", [
        ("cc93cf18508d94934c64b65d8ba7667fb7cde4b0", 1284755224),
        ("75a48a19d4cbe100644e8ac1397eea747a2d33ab", 1094287082),
        ("0bacb7fa082fef30782211938bc1c5e70416ff44", 137359152),
        ("66c28227d03a2d5529262ff016a1e6ef76557ece", 1726969429),
        ("a904c900a64b35909874b33e61c5938a8e15ed1c", 1640338314),
        ("a37e783d7b7233c083d4f62926c7a25f238d0316", 868254676),
        ("bc9cd28561042c83f219324d3c607256c03272ae", 1918287922),
        ("a4fb960c0bc06e1eabb804e5b397cdc4b45596fa", 82162583),
        ("1b3c89f65e6c9e883012052823443f048b4332db", 673399871),
        ("1637409809a679dc698207310c8c7fc07290d9e5", 645520489),
    ])
    def test_truncation_rfc4226_appendix_d(self, hmac_hex, truncated):
        """Counter 0 lands on offset 0 with the sign bit set; the mask clears it."""
        assert dynamic_truncate(bytes.fromhex(hmac_hex)) == truncated

    @pytest.mark.parametrize("counter,expected", [
        (0, "755224"),
        (1, "287082"),
        (2, "359152"),
        (3, "969429"),
        (4, "338314"),
        (5, "254676"),
        (6, "287922"),
        (7, "162583"),
        (8, "399871"),
        (9, "520489"),
    ])
    def test_rfc4226_vectors(self, counter, expected):
        """A one-second period makes the counter equal the timestamp."""
        manager = TOTPManager(period=1)
        assert manager.generate_totp(RFC_SECRET, counter) == expected

    def test_format_code_zero_pads(self):
        assert format_code(42, 6) == "000042"
        assert format_code(0, 8) == "00000000"

    def test_format_code_reduces_modulo(self):
        assert format_code(1234567890, 6) == "567890"


# =============================================================================
# Secrets
# =============================================================================

class TestSecrets:
    """Secret generation and decoding."""

    def test_generated_secret_shape(self, totp_manager):
        secret = totp_manager.generate_secret()
        groups = secret.split(" ")
        assert len(groups) == 8
        assert all(len(group) == 4 for group in groups)
        assert "=" not in secret

    def test_generated_secret_decodes_to_secret_size(self, totp_manager):
        assert len(decode_secret(totp_manager.generate_secret())) == 20

    def test_secret_size_configurable(self):
        manager = TOTPManager(secret_size=32)
        assert len(decode_secret(manager.generate_secret())) == 32

    def test_secret_below_160_bits_rejected(self):
        with pytest.raises(ValueError):
            TOTPManager(secret_size=16)

    def test_generated_secrets_differ(self, totp_manager):
        secrets_seen = {totp_manager.generate_secret() for _ in range(50)}
        assert len(secrets_seen) == 50

    def test_random_source_failure_propagates(self, totp_manager, monkeypatch):
        """No time-derived fallback secret."""
        def broken(length=32):
            raise NotImplementedError("no entropy")

        monkeypatch.setattr("tokenauth.totp.pyotp.random_base32", broken)
        with pytest.raises(RandomSourceError):
            totp_manager.generate_secret()

    def test_format_secret_groups_by_four(self):
        assert format_secret("JBSWY3DPEHPK3PXP") == "JBSW Y3DP EHPK 3PXP"
        assert format_secret("jbsw y3dp ehpk 3p==") == "JBSW Y3DP EHPK 3P"

    def test_decodes_rfc_seed(self):
        assert decode_secret(RFC_SECRET) == b"12345678901234567890"

    def test_spaces_and_case_are_insignificant(self):
        assert decode_secret("jbsw y3dp ehpk 3pxp") == decode_secret("JBSWY3DPEHPK3PXP")

    @pytest.mark.parametrize("bad", ["not-base32!!!", "", "   ", "A", "ABC189"])
    def test_malformed_secret_rejected(self, bad):
        with pytest.raises(SecretDecodeError):
            decode_secret(bad)


# =============================================================================
# Code generation
# =============================================================================

class TestGenerateTOTP:
    """RFC 6238 code generation."""

    @pytest.mark.parametrize("unix_time,expected", [
        (59, "94287082"),
        (1111111109, "07081804"),
        (1111111111, "14050471"),
        (1234567890, "89005924"),
        (2000000000, "69279037"),
        (20000000000, "65353130"),
    ])
    def test_rfc6238_sha1_vectors(self, unix_time, expected):
        manager = TOTPManager(digits=8)
        assert manager.generate_totp(RFC_SECRET, unix_time) == expected

    def test_rfc6238_sha256_vector(self):
        secret = base64.b32encode(b"12345678901234567890123456789012").decode()
        manager = TOTPManager(digits=8, algorithm="SHA256")
        assert manager.generate_totp(secret, 59) == "46119246"

    def test_rfc6238_sha512_vector(self):
        secret = base64.b32encode(b"1234567890" * 6 + b"1234").decode()
        manager = TOTPManager(digits=8, algorithm="SHA512")
        assert manager.generate_totp(secret, 59) == "90693936"

    def test_six_digit_code_keeps_leading_zeros(self, totp_manager):
        """1234567890 yields 89005924; the 6-digit code is its low six digits."""
        assert totp_manager.generate_totp(RFC_SECRET, 1234567890) == "005924"

    def test_accepts_datetime(self):
        manager = TOTPManager(digits=8)
        when = datetime.fromtimestamp(1111111109, tz=timezone.utc)
        assert manager.generate_totp(RFC_SECRET, when) == "07081804"

    def test_naive_datetime_read_as_utc(self):
        manager = TOTPManager(digits=8)
        assert manager.generate_totp(RFC_SECRET, datetime(2005, 3, 18, 1, 58, 29)) == "07081804"

    @pytest.mark.parametrize("before_epoch", [
        -1,
        -0.5,
        datetime(1969, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
    ])
    def test_timestamp_before_epoch_rejected(self, totp_manager, before_epoch):
        with pytest.raises(ValueError, match="epoch"):
            totp_manager.generate_totp(RFC_SECRET, before_epoch)

    def test_epoch_is_counter_zero(self):
        manager = TOTPManager(digits=8)
        assert manager.counter_at(0) == 0
        assert manager.generate_totp(RFC_SECRET, 0) == "84755224"

    def test_defaults_to_clock(self):
        manager = TOTPManager(digits=8, clock=lambda: 59)
        assert manager.generate_totp(RFC_SECRET) == "94287082"

    def test_same_window_same_code(self, totp_manager):
        assert totp_manager.generate_totp(RFC_SECRET, 60) == totp_manager.generate_totp(RFC_SECRET, 89)

    @pytest.mark.parametrize("unix_time", [0, 59, 1700000000, 1700000029, 1700000030])
    def test_matches_pyotp(self, totp_manager, unix_time):
        secret = "JBSWY3DPEHPK3PXP"
        assert totp_manager.generate_totp(secret, unix_time) == pyotp.TOTP(secret).at(unix_time)

    def test_formatted_secret_matches_pyotp(self, totp_manager):
        secret = totp_manager.generate_secret()
        expected = pyotp.TOTP(secret.replace(" ", "")).at(1700000000)
        assert totp_manager.generate_totp(secret, 1700000000) == expected

    def test_digit_width_always_exact(self, totp_manager):
        secret = totp_manager.generate_secret()
        for step in range(200):
            code = totp_manager.generate_totp(secret, step * 30)
            assert len(code) == 6
            assert code.isdigit()

    def test_malformed_secret_raises(self, totp_manager):
        with pytest.raises(SecretDecodeError):
            totp_manager.generate_totp("not-base32!!!", 1700000000)


# =============================================================================
# Validation
# =============================================================================

class TestValidateTOTP:
    """Skew tolerance and rejection."""

    T = 1111111109  # counter 37037036, last second of its window

    def test_round_trip(self, totp_manager):
        secret = totp_manager.generate_secret()
        code = totp_manager.generate_totp(secret, self.T)
        assert totp_manager.validate_totp(secret, code, self.T)

    def test_skew_tolerance(self, totp_manager):
        code = totp_manager.generate_totp(RFC_SECRET, self.T)
        period = totp_manager.period

        assert totp_manager.validate_totp(RFC_SECRET, code, self.T)
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T + period - 1)
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T - period + 1)
        assert not totp_manager.validate_totp(RFC_SECRET, code, self.T + 2 * period)

    def test_one_step_each_way(self, totp_manager):
        code = totp_manager.generate_totp(RFC_SECRET, self.T)
        period = totp_manager.period
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T + period)
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T - period)
        assert not totp_manager.validate_totp(RFC_SECRET, code, self.T - 2 * period)

    def test_zero_skew_only_accepts_current_window(self):
        manager = TOTPManager(skew_steps=0)
        code = manager.generate_totp(RFC_SECRET, self.T)
        assert manager.validate_totp(RFC_SECRET, code, self.T)
        assert not manager.validate_totp(RFC_SECRET, code, self.T + 30)

    def test_wrong_code_rejected(self, totp_manager):
        code = totp_manager.generate_totp(RFC_SECRET, self.T)
        wrong = format_code(int(code) + 1, 6)
        assert not totp_manager.validate_totp(RFC_SECRET, wrong, self.T)

    @pytest.mark.parametrize("candidate", ["", None, "12345", "1234567", "abcdef"])
    def test_junk_candidates_rejected(self, totp_manager, candidate):
        assert not totp_manager.validate_totp(RFC_SECRET, candidate, self.T)

    def test_malformed_secret_is_false_not_error(self, totp_manager):
        assert not totp_manager.validate_totp("not-base32!!!", "123456", self.T)

    def test_matching_counter_reports_window(self, totp_manager):
        counter = totp_manager.counter_at(self.T)
        code = totp_manager.generate_totp(RFC_SECRET, self.T)
        assert totp_manager.matching_counter(RFC_SECRET, code, self.T) == counter
        assert totp_manager.matching_counter(RFC_SECRET, code, self.T + 30) == counter

    def test_replay_within_window_is_not_blocked(self, totp_manager):
        """Single use is the caller's job (track matching_counter results)."""
        code = totp_manager.generate_totp(RFC_SECRET, self.T)
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T)
        assert totp_manager.validate_totp(RFC_SECRET, code, self.T)


# =============================================================================
# Enrollment
# =============================================================================

class TestEnrollment:
    """Provisioning URI and QR code."""

    def test_qr_code_url_format(self, totp_manager):
        url = totp_manager.get_qr_code_url("JBSW Y3DP EHPK 3PXP", "alice@example.com", "Issuer")
        assert url == (
            "otpauth://totp/Issuer:alice@example.com"
            "?secret=JBSWY3DPEHPK3PXP&issuer=Issuer&algorithm=SHA1&digits=6&period=30"
        )

    def test_qr_code_url_reflects_configuration(self):
        manager = TOTPManager(digits=8, period=60, algorithm="SHA256")
        url = manager.get_qr_code_url("JBSWY3DPEHPK3PXP", "bob", "Acme")
        assert url.endswith("&algorithm=SHA256&digits=8&period=60")

    def test_qr_code_url_default_issuer(self, totp_manager):
        url = totp_manager.get_qr_code_url("JBSWY3DPEHPK3PXP", "bob")
        assert url.startswith("otpauth://totp/tokenauth:bob?")

    def test_qr_code_url_parsed_by_pyotp(self, totp_manager):
        url = totp_manager.get_qr_code_url("JBSWY3DPEHPK3PXP", "alice@example.com", "Issuer")
        parsed = pyotp.parse_uri(url)
        assert parsed.secret == "JBSWY3DPEHPK3PXP"
        assert parsed.issuer == "Issuer"
        assert parsed.name == "alice@example.com"
        assert parsed.at(1700000000) == totp_manager.generate_totp("JBSWY3DPEHPK3PXP", 1700000000)

    def test_qr_code_data_uri_is_png(self, totp_manager):
        data_uri = totp_manager.qr_code_data_uri("JBSWY3DPEHPK3PXP", "alice", "Issuer")
        prefix = "data:image/png;base64,"
        assert data_uri.startswith(prefix)
        assert base64.b64decode(data_uri[len(prefix):]).startswith(b"\x89PNG")


class TestManagerConfiguration:
    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError):
            TOTPManager(algorithm="MD5")

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValueError):
            TOTPManager(period=0)
