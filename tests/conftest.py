"""Shared pytest fixtures for tokenauth tests."""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

# ---------------------------------------------------------------------------
# Deterministic test environment - set BEFORE any tokenauth module imports.
# tokenauth.config resolves settings at import time, and AppSettings
# refuses to start without JWT_SECRET outside TESTING mode.
# ---------------------------------------------------------------------------
os.environ.setdefault('TESTING', 'true')
os.environ.setdefault('JWT_SECRET', 'test-jwt-secret-for-pytest-32chars!')

TEST_SECRET = "unit-test-signing-key-0123456789abcdef"

# RFC 6238 Appendix B seed ("12345678901234567890") in base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


class FakeClock:
    """Settable UTC clock for TokenManager."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def timestamp(self) -> float:
        return self.now.timestamp()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    from tokenauth.revocation import InMemoryRevocationStore
    return InMemoryRevocationStore(clock=clock.timestamp)


@pytest.fixture
def principal():
    from tokenauth.types import Principal
    return Principal(username="alice", role="editor")


@pytest.fixture
def token_manager(store, clock):
    from tokenauth.tokens import TokenManager
    return TokenManager(
        secret=TEST_SECRET,
        access_lifetime=timedelta(minutes=15),
        refresh_lifetime=timedelta(days=7),
        store=store,
        clock=clock,
    )


@pytest.fixture
def totp_manager():
    from tokenauth.totp import TOTPManager
    return TOTPManager()


@pytest.fixture
def reset_settings():
    """Clear cached settings before and after a test that edits the env."""
    from config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
