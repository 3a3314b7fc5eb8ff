"""End-to-end: register → verify email → verify OTP → login over the HTTP API."""

from tests.mocks.accounts import OTHER_STRONG_PASSWORD, STRONG_PASSWORD

EMAIL = "a@x.com"
PHONE = "+8801712345678"


def _register(client, **overrides):
    body = {
        "firstName": "Karim",
        "lastName": "Hossain",
        "email": EMAIL,
        "phone": "01712345678",
        "password": STRONG_PASSWORD,
        "confirmPassword": STRONG_PASSWORD,
    }
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_full_registration_scenario(client, email_outbox, sms_outbox):
    resp = _register(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["account"]["status"] == "PENDING"
    assert data["account"]["phone"] == PHONE
    assert data["requires_email_verification"] is True
    assert data["requires_phone_verification"] is True

    early = client.post("/api/auth/login", json={"identifier": EMAIL, "password": STRONG_PASSWORD})
    assert early.status_code == 403
    assert early.json()["detail"]["code"] == "ACCOUNT_NOT_VERIFIED"
    assert early.json()["detail"]["missing_channels"] == ["email", "phone"]

    resp = client.post("/api/auth/verify-email", json={"token": email_outbox.last(EMAIL).token})
    assert resp.status_code == 200
    assert resp.json()["account"]["status"] == "PENDING"
    assert resp.json()["account"]["missing_channels"] == ["phone"]

    resp = client.post(
        "/api/auth/verify-otp",
        json={"phone": "01712345678", "otp": sms_outbox.last_code(PHONE)},
    )
    assert resp.status_code == 200
    assert resp.json()["verified"] is True
    assert resp.json()["account"]["status"] == "ACTIVE"

    resp = client.post("/api/auth/login", json={"identifier": EMAIL, "password": STRONG_PASSWORD})
    assert resp.status_code == 200
    tokens = resp.json()
    assert tokens["token_type"] == "bearer"
    assert tokens["account"]["last_login_at"] is not None

    me = client.get("/api/accounts/me", headers=_auth(tokens["access_token"]))
    assert me.status_code == 200
    assert me.json()["email"] == EMAIL

    refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["access_token"]

    logout = client.post("/api/auth/logout", headers=_auth(tokens["refresh_token"]))
    assert logout.status_code == 200
    assert client.get("/api/accounts/me", headers=_auth(tokens["access_token"])).status_code == 401


def test_duplicate_registration_is_409(client):
    assert _register(client).status_code == 201
    resp = _register(client, phone="01812345678")
    assert resp.status_code == 409
    assert resp.json()["detail"] == {
        "code": "CONFLICT",
        "message": "An account with this email already exists",
        "field": "email",
    }


def test_domain_validation_errors_are_400(client):
    resp = _register(client, phone="01212345678")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_PHONE_FORMAT"

    resp = _register(client, password="password", confirmPassword="password")
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "WEAK_PASSWORD"
    assert detail["violations"]


def test_malformed_body_is_400_validation_error(client):
    resp = client.post("/api/auth/register", json={"firstName": "Karim"})
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert {error["field"] for error in detail["errors"]} >= {"password", "confirmPassword"}


def test_registration_transport_failure_is_500(client, email_outbox):
    email_outbox.fail = True
    resp = _register(client)
    assert resp.status_code == 500
    assert resp.json()["detail"]["code"] == "REGISTRATION_FAILED"
    email_outbox.fail = False
    assert _register(client).status_code == 201


def test_dropped_connection_during_registration_is_structured_500(client, email_outbox):
    email_outbox.error = ConnectionResetError("connection reset by peer")
    resp = _register(client)

    assert resp.status_code == 500
    assert resp.json()["detail"]["code"] == "REGISTRATION_FAILED"


def test_otp_limits_over_http(client, sms_outbox):
    phone = {"phone": "01912345678"}
    assert client.post("/api/auth/send-otp", json=phone).status_code == 200
    assert client.post("/api/auth/resend-otp", json=phone).status_code == 200

    cooldown = client.post("/api/auth/resend-otp", json=phone)
    assert cooldown.status_code == 429
    assert cooldown.json()["detail"]["code"] == "RATE_LIMITED"
    assert int(cooldown.headers["Retry-After"]) > 0

    assert client.post("/api/auth/send-otp", json=phone).status_code == 200
    limited = client.post("/api/auth/send-otp", json=phone)
    assert limited.status_code == 429
    assert limited.json()["detail"]["code"] == "TOO_MANY_OTP_REQUESTS"


def test_wrong_otp_reports_remaining_attempts(client, sms_outbox):
    client.post("/api/auth/send-otp", json={"phone": PHONE})
    code = sms_outbox.last_code(PHONE)
    wrong = "000000" if code != "000000" else "111111"

    resp = client.post("/api/auth/verify-otp", json={"phone": PHONE, "otp": wrong})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "OTP_MISMATCH"
    assert resp.json()["detail"]["attempts_remaining"] == 2


def test_password_reset_over_http(client, email_outbox, sms_outbox):
    _register(client, phone=None)
    client.post("/api/auth/verify-email", json={"token": email_outbox.last(EMAIL).token})

    resp = client.post("/api/auth/forgot-password", json={"email": EMAIL})
    assert resp.status_code == 200
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@shopmail.com"})
    assert unknown.json() == resp.json()

    token = email_outbox.last(EMAIL).token
    resp = client.post(
        "/api/auth/reset-password",
        json={"token": token, "newPassword": STRONG_PASSWORD, "confirmPassword": STRONG_PASSWORD},
    )
    assert resp.json()["detail"]["code"] == "PASSWORD_ALREADY_USED"

    resp = client.post(
        "/api/auth/reset-password",
        json={
            "token": token,
            "new_password": OTHER_STRONG_PASSWORD,
            "confirm_password": OTHER_STRONG_PASSWORD,
        },
    )
    assert resp.status_code == 200
    login = client.post(
        "/api/auth/login", json={"identifier": EMAIL, "password": OTHER_STRONG_PASSWORD}
    )
    assert login.status_code == 200


def test_change_password_requires_bearer_token(client):
    resp = client.post(
        "/api/accounts/me/change-password",
        json={
            "currentPassword": STRONG_PASSWORD,
            "newPassword": OTHER_STRONG_PASSWORD,
            "confirmPassword": OTHER_STRONG_PASSWORD,
        },
    )
    assert resp.status_code == 401


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_repeated_failed_logins_lock_the_identifier(client):
    body = {"identifier": "01812345678", "password": "Wrong#Pass123"}
    statuses = [client.post("/api/auth/login", json=body).status_code for _ in range(4)]
    assert statuses == [401, 401, 401, 401]

    locked = client.post("/api/auth/login", json=body)
    assert locked.status_code == 429
    assert locked.json()["detail"]["code"] == "RATE_LIMITED"
    assert locked.headers["Retry-After"] == "1800"

    # The same number in another format shares the lockout.
    again = client.post(
        "/api/auth/login", json={"identifier": "+8801812345678", "password": "x"}
    )
    assert again.status_code == 429


def test_password_policy(client):
    resp = client.get("/api/auth/password-policy")
    assert resp.status_code == 200
    policy = resp.json()["policy"]
    assert policy["min_length"] == 8
    assert policy["min_strength"] == "good"
    assert "special character" in policy["required_character_classes"]


def test_validate_phone(client):
    valid = client.post("/api/auth/validate-phone", json={"phone": "019-1234-5678"})
    assert valid.status_code == 200
    assert valid.json() == {
        "message": "Valid phone number",
        "valid": True,
        "phone": "+8801912345678",
        "local": "01912345678",
        "operator": "Banglalink",
    }

    invalid = client.post("/api/auth/validate-phone", json={"phone": "01212345678"})
    assert invalid.status_code == 200
    assert invalid.json()["valid"] is False
    assert invalid.json()["code"] == "INVALID_PHONE_FORMAT"


def test_operators(client):
    resp = client.get("/api/auth/operators")
    assert resp.status_code == 200
    operators = resp.json()["operators"]
    assert [operator["prefix"] for operator in operators] == [
        "013", "014", "015", "016", "017", "018", "019",
    ]
    assert {"prefix": "018", "name": "Robi"} in operators
