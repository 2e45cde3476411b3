"""
Shared pytest fixtures for all tests.

Provides an isolated in-memory database, a controllable clock, a fake Google
and a TestClient for the fully assembled application.
"""

import pytest
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Generator
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from advent_calendar.auth.db_models import UserORM
from advent_calendar.core.config import GoogleOAuthSettings, NoAuth, Settings
from advent_calendar.core.database import create_database, init_database
from advent_calendar.main import create_app

from tests.helpers.clock import MutableClock
from tests.helpers.fake_google import (
    AUTH_URL,
    CERTS_URL,
    CLIENT_ID,
    CLIENT_SECRET,
    TOKEN_URL,
    FakeGoogle,
)

NOW = datetime(2024, 12, 10, 12, 0, tzinfo=timezone.utc)
TOKEN_HASH_KEY = b"test-token-hash-key-32-bytes-long"

ALICE = "alice@example.com"
BOB = "bob@example.com"
ADMIN = "admin@example.com"
OUTSIDER = "mallory@example.com"


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """
    In-memory SQLite engine with every table created.

    create_database pins in-memory SQLite to one connection (StaticPool) so
    the app's worker threads and the test see the same data.
    """
    engine, _ = create_database("sqlite://")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    """Session for repository tests. Rolled back after each test."""
    session = Session(bind=engine)
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def count_users(engine) -> Callable[[], int]:
    """Count committed user rows."""
    def count() -> int:
        with Session(bind=engine) as session:
            return session.execute(select(func.count()).select_from(UserORM)).scalar_one()
    return count


# =============================================================================
# TIME AND PROVIDER FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(NOW)


@pytest.fixture
def fake_google(clock) -> FakeGoogle:
    return FakeGoogle(clock=clock)


# =============================================================================
# SETTINGS FIXTURES
# =============================================================================

@pytest.fixture
def messages_dir(tmp_path) -> Path:
    """Asset directory with messages for 1-10 December 2024, except the 4th."""
    assets = tmp_path / "assets"
    messages = assets / "messages"
    messages.mkdir(parents=True)
    for day in range(1, 11):
        if day == 4:
            continue
        (messages / f"2024-12-{day:02d}").write_text(f"Message for day {day}", encoding="utf-8")
    return assets


@pytest.fixture
def google_settings() -> GoogleOAuthSettings:
    return GoogleOAuthSettings(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        allowed_user_emails=(ALICE, BOB, ADMIN),
        server_base_url="https://testserver",
        auth_server_url=AUTH_URL,
        token_server_url=TOKEN_URL,
        public_certs_url=CERTS_URL,
    )


@pytest.fixture
def settings(google_settings, messages_dir) -> Settings:
    return Settings(
        token_hash_key=TOKEN_HASH_KEY,
        auth=google_settings,
        db_url="sqlite://",
        asset_dirs=(messages_dir,),
        admin_emails=(ADMIN,),
        earliest_date=date(2024, 11, 1),
    )


@pytest.fixture
def no_auth_settings(messages_dir) -> Settings:
    return Settings(
        token_hash_key=TOKEN_HASH_KEY,
        auth=NoAuth(),
        db_url="sqlite://",
        asset_dirs=(messages_dir,),
        earliest_date=date(2024, 11, 1),
    )


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

@pytest.fixture
def app(settings, clock, fake_google, engine):
    return create_app(settings, clock=clock, http_transport=fake_google.transport(), engine=engine)


@pytest.fixture
def new_client(app) -> Callable[[], TestClient]:
    """
    Factory for browser-like clients.

    HTTPS base URL so Secure cookies are sent back; redirects are returned,
    not followed.
    """
    def make() -> TestClient:
        return TestClient(app, base_url="https://testserver", follow_redirects=False)
    return make


@pytest.fixture
def client(new_client) -> TestClient:
    return new_client()


@pytest.fixture
def sign_in(fake_google) -> Callable:
    """
    Run the whole sign-in flow for a client.

    Returns the callback response; the client's cookie jar then holds the
    session cookie.
    """
    counter = {"n": 0}

    def run(client: TestClient, email: str = ALICE, subject: str = None):
        counter["n"] += 1
        started = client.get("/")
        assert started.status_code == 302
        state = parse_qs(urlparse(started.headers["location"]).query)["state"][0]

        id_token = fake_google.id_token(subject=subject or f"subject-{email}", email=email)
        code = fake_google.issue_code(id_token, code=f"code-{counter['n']}")
        return client.get("/oauth/code", params={"code": code, "state": state})

    return run
