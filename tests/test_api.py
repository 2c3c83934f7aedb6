from fastapi.testclient import TestClient

from cleancare_shared import SmsGateway, SmsResult


def test_health(client, manager):
    manager.issue("9876543210")
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["status"] == "ok"
    assert body["otpStoreSize"] == 1
    assert body["env"] == "dev"
    assert "timestamp" in body


def test_send_otp_success(client, manager, codes):
    r = client.post("/api/auth/send-otp", json={"phone": "+91 98765 43210"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"] == {"phone": "9876543210", "expiresIn": 300}
    assert codes.last not in r.text
    assert manager.store.get("9876543210").code == codes.last


def test_send_otp_missing_phone(client):
    r = client.post("/api/auth/send-otp", json={})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "invalid_input"
    assert body["message"] == "Missing required fields: phone"


def test_send_otp_without_body(client):
    r = client.post("/api/auth/send-otp")
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_input"


def test_send_otp_invalid_phone(client):
    r = client.post("/api/auth/send-otp", json={"phone": "12345"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_phone"


def test_send_otp_rate_limited(client, clock):
    assert client.post("/api/auth/send-otp", json={"phone": "9876543210"}).status_code == 200
    clock.advance(5)
    r = client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    assert r.status_code == 429
    body = r.json()
    assert body["code"] == "otp_rate_limited"
    assert body["retryAfter"] == 25
    assert r.headers["Retry-After"] == "25"


class _FailingBackend:
    name = "fast2sms"

    def send_code(self, phone, code):
        return SmsResult(success=False, error="DLT template not approved")


def test_send_otp_sms_failure_in_production(session_factory, manager):
    from app.main import create_app

    app = create_app(
        session_factory=session_factory,
        otp_manager=manager,
        sms_gateway=SmsGateway(_FailingBackend(), production=True),
    )
    with TestClient(app) as client:
        r = client.post("/api/auth/send-otp", json={"phone": "9876543210"})
        assert r.status_code == 500
        assert r.json()["code"] == "sms_delivery_failed"
        assert r.json()["message"] == "Failed to send SMS. Please try again."
        metrics = client.get("/metrics").text
    assert 'sms_sends_total{provider="fast2sms",outcome="failed"} 1.0' in metrics


def test_verify_otp_new_user_flow(client, codes):
    client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": codes.last})
    assert r.status_code == 400
    assert r.json()["code"] == "name_required"

    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": codes.last, "name": "Asha"})
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Authentication successful"
    data = body["data"]
    assert data["expiresIn"] == 2592000
    assert data["token"]
    user = data["user"]
    assert set(user) == {"id", "phone", "name", "email", "isVerified", "createdAt", "lastLogin"}
    assert user["phone"] == "9876543210"
    assert user["name"] == "Asha"
    assert user["isVerified"] is True


def test_verify_otp_wrong_code_reports_remaining(client, login, clock, codes):
    login()
    clock.advance(31)
    client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": "000000"})
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "otp_invalid"
    assert body["remainingAttempts"] == 2
    assert body["message"] == "Invalid OTP. 2 attempts remaining."


def test_verify_otp_bad_format(client):
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": "12ab56"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_otp_format"


def test_verify_otp_missing_fields(client):
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210"})
    assert r.status_code == 400
    assert r.json()["message"] == "Missing required fields: otp"


def test_verify_otp_without_request(client):
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": "123456", "name": "Asha"})
    assert r.status_code == 400
    assert r.json()["code"] == "otp_not_found"


def test_verify_otp_expired(client, login, clock, codes):
    login()
    clock.advance(31)
    client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    clock.advance(301)
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": codes.last})
    assert r.status_code == 400
    assert r.json()["code"] == "otp_expired"


def test_verify_token(client, login):
    data = login()
    r = client.post("/api/auth/verify-token", json={"token": data["token"]})
    assert r.status_code == 200
    body = r.json()["data"]
    assert body["valid"] is True
    assert body["user"]["id"] == data["user"]["id"]


def test_verify_token_rejects_garbage(client):
    r = client.post("/api/auth/verify-token", json={"token": "nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "invalid_token"
    assert r.headers["WWW-Authenticate"] == "Bearer"


def test_verify_token_missing(client):
    r = client.post("/api/auth/verify-token", json={})
    assert r.status_code == 400


def test_check_phone(client, login):
    r = client.post("/api/auth/check-phone", json={"phone": "+919876543210"})
    assert r.json()["data"] == {"phone": "9876543210", "exists": False}
    login()
    r = client.post("/api/auth/check-phone", json={"phone": "9876543210"})
    assert r.status_code == 200
    assert r.json()["data"]["exists"] is True
    r = client.post("/api/auth/check-phone", json={"phone": "42"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_phone"


def test_logout(client):
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Logout successful"}


def test_unknown_route_uses_error_envelope(client):
    r = client.get("/api/auth/nope")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_request_id_and_security_headers(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    r = client.post("/api/auth/logout")
    assert r.headers["Cache-Control"] == "no-store"
    assert len(client.get("/health").headers["X-Request-ID"]) == 32


def test_metrics_endpoint_counts_otp_flow(client, login):
    login()
    text = client.get("/metrics").text
    assert 'otp_requests_total{outcome="simulated"} 1.0' in text
    assert 'otp_verifications_total{outcome="verified"} 1.0' in text
    assert 'sms_sends_total{provider="simulated",outcome="simulated"} 1.0' in text
    assert "otp_pending 0.0" in text
    assert 'http_requests_total{method="POST",path="/api/auth/send-otp",status="200"} 1.0' in text


def test_lifespan_shutdown_stops_sweeper(session_factory):
    from app.main import create_app
    from cleancare_shared import OTPConfig, OTPSessionManager

    manager = OTPSessionManager(OTPConfig(sweep_interval_secs=30))
    assert manager.sweeper.running
    with TestClient(create_app(session_factory=session_factory, otp_manager=manager)):
        pass
    assert not manager.sweeper.running


def test_verify_token_for_missing_user(client, api_app):
    import uuid

    token = api_app.state.session_issuer.issue(str(uuid.uuid4()))
    r = client.post("/api/auth/verify-token", json={"token": token})
    assert r.status_code == 404
    assert r.json()["code"] == "user_not_found"


def test_first_time_user_expired_code_without_name(client, clock, codes):
    client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    clock.advance(301)
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": codes.last})
    assert r.status_code == 400
    assert r.json()["code"] == "otp_expired"


def test_first_time_user_wrong_code_without_name(client):
    client.post("/api/auth/send-otp", json={"phone": "9876543210"})
    r = client.post("/api/auth/verify-otp", json={"phone": "9876543210", "otp": "000000"})
    assert r.status_code == 400
    assert r.json()["code"] == "otp_invalid"
    assert r.json()["remainingAttempts"] == 2


def test_unhandled_error_reports_request_id(session_factory, manager):
    from app.main import create_app

    app = create_app(session_factory=session_factory, otp_manager=manager, sms_gateway=SmsGateway(None))

    @app.get("/explode")
    def explode():
        raise RuntimeError("kaboom")

    with TestClient(app, raise_server_exceptions=False) as client:
        r = client.get("/explode", headers={"X-Request-ID": "req-42"})
    assert r.status_code == 500
    body = r.json()
    assert body["code"] == "internal_error"
    assert body["requestId"] == "req-42"
    assert "kaboom" not in r.text
