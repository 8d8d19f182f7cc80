from __future__ import annotations


def _assert_status(resp, expected: int) -> None:
    if resp.status_code == expected:
        return
    method = resp.request.method if resp.request else "UNKNOWN"
    path = resp.request.url.path if resp.request else "UNKNOWN"
    raise AssertionError(
        f"Expected {expected}, got {resp.status_code} for {method} {path}. Response: {resp.text}"
    )


def test_dev_login_creates_pending_profile(client):
    resp = client.post("/api/v1/auth/dev-login", json={"email": "New.Doctor@Example.com", "crm": "123", "crm_uf": "mg"})
    _assert_status(resp, 200)
    body = resp.json()
    assert body["email"] == "new.doctor@example.com"
    assert body["profile_status"] == "pending"
    assert body["is_admin"] is False
    assert body["token_type"] == "bearer"

    session = client.get("/api/v1/auth/session", headers={"Authorization": f"Bearer {body['access_token']}"})
    _assert_status(session, 200)
    profile = session.json()["profile"]
    assert profile["status"] == "pending"
    assert profile["crm_uf"] == "MG"


def test_bootstrap_admin_is_approved(client):
    resp = client.post("/api/v1/auth/dev-login", json={"email": "admin@example.com"})
    _assert_status(resp, 200)
    assert resp.json()["profile_status"] == "approved"
    assert resp.json()["is_admin"] is True


def test_dev_login_rejects_bad_email(client):
    resp = client.post("/api/v1/auth/dev-login", json={"email": "not-an-email"})
    _assert_status(resp, 422)


def test_pending_doctor_is_redirected_to_waiting_page(client, login):
    headers = login("pending@example.com")
    resp = client.get("/api/v1/patients", headers=headers)
    _assert_status(resp, 403)
    assert resp.json()["detail"] == {"message": "Access denied", "redirect_to": "/aguardando-aprovacao"}


def test_suspended_doctor_is_redirected(client, approved_doctor, login):
    headers = approved_doctor("suspended@example.com")
    profile_id = client.get("/api/v1/auth/session", headers=headers).json()["profile"]["id"]
    admin = login("admin@example.com")
    resp = client.patch(
        f"/api/v1/admin/profiles/{profile_id}/status",
        json={"status": "suspended"},
        headers=admin,
    )
    _assert_status(resp, 200)

    denied = client.get("/api/v1/patients", headers=headers)
    _assert_status(denied, 403)
    assert denied.json()["detail"]["redirect_to"] == "/conta-suspensa"


def test_admin_route_rejects_doctor(client, approved_doctor):
    headers = approved_doctor()
    resp = client.patch(
        "/api/v1/admin/profiles/00000000-0000-4000-8000-000000000000/status",
        json={"status": "approved"},
        headers=headers,
    )
    _assert_status(resp, 403)
    assert resp.json()["detail"]["redirect_to"] == "/dashboard"


def test_admin_status_update_validates_payload(client, login):
    admin = login("admin@example.com")
    resp = client.patch(
        "/api/v1/admin/profiles/00000000-0000-4000-8000-000000000000/status",
        json={"status": "retired"},
        headers=admin,
    )
    _assert_status(resp, 422)

    missing = client.patch(
        "/api/v1/admin/profiles/00000000-0000-4000-8000-000000000000/status",
        json={"status": "approved"},
        headers=admin,
    )
    _assert_status(missing, 404)


def test_missing_and_invalid_bearer_are_401(client):
    _assert_status(client.get("/api/v1/patients"), 401)
    _assert_status(client.get("/api/v1/patients", headers={"Authorization": "Bearer junk"}), 401)
    _assert_status(client.get("/api/v1/patients", headers={"Authorization": "Basic abc"}), 401)


def test_logout_revokes_session(client, login):
    headers = login("doctor@example.com")
    resp = client.post("/api/v1/auth/logout", headers=headers)
    _assert_status(resp, 200)
    assert resp.json() == {"ok": True, "message": "Logged out"}

    after = client.get("/api/v1/auth/session", headers=headers)
    _assert_status(after, 401)


def test_guard_endpoint_for_anonymous_caller(client):
    resp = client.get("/api/v1/auth/guard", params={"path": "/exames/novo"})
    _assert_status(resp, 200)
    assert resp.json() == {"render": False, "redirect_to": "/auth", "from_path": "/exames/novo"}


def test_guard_endpoint_for_signed_in_callers(client, login, approved_doctor):
    pending = login("pending@example.com")
    resp = client.get("/api/v1/auth/guard", params={"path": "/dashboard"}, headers=pending)
    assert resp.json()["redirect_to"] == "/aguardando-aprovacao"

    approved = approved_doctor()
    resp = client.get("/api/v1/auth/guard", params={"path": "/dashboard"}, headers=approved)
    assert resp.json() == {"render": True, "redirect_to": None, "from_path": None}

    resp = client.get(
        "/api/v1/auth/guard",
        params={"path": "/admin", "require_admin": "true"},
        headers=approved,
    )
    assert resp.json()["redirect_to"] == "/dashboard"

    admin = login("admin@example.com")
    resp = client.get("/api/v1/auth/guard", params={"path": "/admin", "require_admin": "true"}, headers=admin)
    assert resp.json()["render"] is True
