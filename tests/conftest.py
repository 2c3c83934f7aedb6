import os
import tempfile
from pathlib import Path

import pytest

_TMP = Path(tempfile.mkdtemp(prefix="cleancare-tests-"))

# Ensure sensible defaults for tests before app import
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("DB_URL", f"sqlite:///{_TMP / 'app.db'}")
os.environ.setdefault("OTP_SWEEP_INTERVAL_SECS", "0")
os.environ.setdefault("DVHOSTING_API_KEY", "")
os.environ.setdefault("FAST2SMS_API_KEY", "")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from cleancare_shared import OTPConfig, OTPSessionManager, SmsGateway  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class CodeSequence:
    """Hands out predictable OTP codes: 100001, 100002, ..."""

    def __init__(self, start: int = 100001):
        self.next = start
        self.issued: list[str] = []

    def __call__(self) -> str:
        code = str(self.next)
        self.next += 1
        self.issued.append(code)
        return code

    @property
    def last(self) -> str:
        return self.issued[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codes():
    return CodeSequence()


@pytest.fixture
def manager(clock, codes):
    mgr = OTPSessionManager(OTPConfig(), clock=clock, code_factory=codes, autostart=False)
    yield mgr
    mgr.shutdown()


@pytest.fixture
def session_factory(tmp_path):
    from app.models import Base

    engine = create_engine(
        f"sqlite:///{tmp_path / 'users.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sms_gateway():
    return SmsGateway(None)


@pytest.fixture
def api_app(session_factory, manager, sms_gateway):
    from app.main import create_app

    return create_app(session_factory=session_factory, otp_manager=manager, sms_gateway=sms_gateway)


@pytest.fixture
def client(api_app):
    with TestClient(api_app) as c:
        yield c


@pytest.fixture
def login(client, codes):
    """Run the OTP flow for ``phone`` and return the auth payload."""

    def _login(phone: str = "9876543210", name: str | None = "Asha") -> dict:
        r = client.post("/api/auth/send-otp", json={"phone": phone})
        assert r.status_code == 200, r.text
        body = {"phone": phone, "otp": codes.last}
        if name is not None:
            body["name"] = name
        r = client.post("/api/auth/verify-otp", json=body)
        assert r.status_code == 200, r.text
        return r.json()["data"]

    return _login
