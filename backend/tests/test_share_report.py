from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ophthexam.api.v1 import functions as functions_api
from ophthexam.db.models import ExamImage, Report
from ophthexam.db.session import SessionLocal
from ophthexam.services.sharing import build_share_url, compute_share_expiry, generate_share_token

NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


def _assert_status(resp, expected: int) -> None:
    if resp.status_code == expected:
        return
    method = resp.request.method if resp.request else "UNKNOWN"
    path = resp.request.url.path if resp.request else "UNKNOWN"
    raise AssertionError(
        f"Expected {expected}, got {resp.status_code} for {method} {path}. Response: {resp.text}"
    )


def _create_exam(client, headers: dict[str, str]) -> str:
    patient = client.post(
        "/api/v1/patients",
        json={"name": "Maria Souza", "gender": "F", "record_number": "PR-001"},
        headers=headers,
    )
    _assert_status(patient, 201)
    exam = client.post(
        "/api/v1/exams",
        json={"patient_id": patient.json()["id"], "exam_type": "oct_macular", "eye": "od"},
        headers=headers,
    )
    _assert_status(exam, 201)
    return exam.json()["id"]


def test_generated_token_is_32_lowercase_hex():
    token = generate_share_token()
    assert re.fullmatch(r"[0-9a-f]{32}", token)


def test_generated_token_honours_odd_and_long_lengths():
    assert len(generate_share_token(31)) == 31
    assert len(generate_share_token(64)) == 64


def test_generated_tokens_do_not_collide():
    tokens = {generate_share_token() for _ in range(10_000)}
    assert len(tokens) == 10_000


def test_expiry_is_now_plus_hours():
    assert compute_share_expiry(1, now=NOW) == NOW + timedelta(hours=1)
    assert compute_share_expiry(72, now=NOW) == datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)
    assert compute_share_expiry(8760, now=NOW) == NOW + timedelta(days=365)


def test_share_url_uses_laudo_path():
    assert build_share_url("https://app.example.com/", "abc") == "https://app.example.com/laudo/abc"


def test_preflight_returns_cors_headers(client):
    resp = client.options("/functions/v1/share-report")
    _assert_status(resp, 200)
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "authorization" in resp.headers["access-control-allow-headers"]


def test_share_requires_bearer(client):
    resp = client.post("/functions/v1/share-report", json={"exam_id": "x"})
    _assert_status(resp, 401)
    assert resp.json() == {"error": "Não autorizado"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_share_rejects_invalid_bearer(client):
    resp = client.post(
        "/functions/v1/share-report",
        json={"exam_id": "x"},
        headers={"Authorization": "Bearer not-a-token"},
    )
    _assert_status(resp, 401)
    assert resp.json()["error"] == "Não autorizado"


def test_share_requires_exam_id(client, approved_doctor):
    headers = approved_doctor()
    resp = client.post("/functions/v1/share-report", json={}, headers=headers)
    _assert_status(resp, 400)
    assert resp.json() == {"error": "exam_id é obrigatório"}


def test_share_rejects_non_positive_hours(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)
    for bad in (0, -5, "soon"):
        resp = client.post(
            "/functions/v1/share-report",
            json={"exam_id": exam_id, "expires_in_hours": bad},
            headers=headers,
        )
        _assert_status(resp, 400)
        assert "error" in resp.json()


def test_share_unknown_or_foreign_exam_is_404(client, approved_doctor):
    owner = approved_doctor("owner@example.com")
    exam_id = _create_exam(client, owner)
    other = approved_doctor("other@example.com")

    resp = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=other)
    _assert_status(resp, 404)

    resp = client.post(
        "/functions/v1/share-report",
        json={"exam_id": "00000000-0000-4000-8000-000000000000"},
        headers=owner,
    )
    _assert_status(resp, 404)


def test_share_creates_report_and_returns_link(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)

    before = datetime.now(timezone.utc)
    resp = client.post(
        "/functions/v1/share-report",
        json={"exam_id": exam_id, "expires_in_hours": 24},
        headers={**headers, "Origin": "http://localhost:5173"},
    )
    _assert_status(resp, 200)
    body = resp.json()

    match = re.fullmatch(r"http://localhost:5173/laudo/([0-9a-f]{32})", body["share_url"])
    assert match, body["share_url"]
    expires_at = datetime.fromisoformat(body["expires_at"])
    assert before + timedelta(hours=24) - timedelta(seconds=5) <= expires_at
    assert expires_at <= datetime.now(timezone.utc) + timedelta(hours=24)

    with SessionLocal() as db:
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
        assert report is not None
        assert report.share_token == match.group(1)


def test_share_defaults_to_72_hours_and_public_origin(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)

    resp = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    _assert_status(resp, 200)
    body = resp.json()
    assert body["share_url"].startswith("https://ophthexam.lovable.app/laudo/")
    expires_at = datetime.fromisoformat(body["expires_at"])
    delta = expires_at - datetime.now(timezone.utc)
    assert timedelta(hours=71, minutes=59) < delta <= timedelta(hours=72)


def test_second_share_replaces_token_on_same_report(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)

    first = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    second = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    _assert_status(first, 200)
    _assert_status(second, 200)
    assert first.json()["share_url"] != second.json()["share_url"]

    with SessionLocal() as db:
        count = db.scalar(select(func.count(Report.id)).where(Report.exam_id == exam_id))
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
    assert count == 1
    assert second.json()["share_url"].endswith(report.share_token)


def test_shared_report_resolves_valid_token(client, approved_doctor):
    headers = approved_doctor(full_name="Dra. Ana Lima", crm="12345", crm_uf="SP")
    exam_id = _create_exam(client, headers)
    with SessionLocal() as db:
        db.add(ExamImage(exam_id=exam_id, eye="od", image_url="https://cdn.example.com/oct.png"))
        db.commit()

    share = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    _assert_status(share, 200)
    token = share.json()["share_url"].rsplit("/", 1)[-1]

    resp = client.get(f"/api/v1/shared-reports/{token}")
    _assert_status(resp, 200)
    body = resp.json()
    assert body["patient"]["name"] == "Maria Souza"
    assert body["exam"]["exam_type"] == "oct_macular"
    assert body["doctor"]["full_name"] == "Dra. Ana Lima"
    assert body["image_url"] == "https://cdn.example.com/oct.png"
    assert body["analysis"] is None


def test_shared_report_unknown_token_is_404(client):
    resp = client.get(f"/api/v1/shared-reports/{generate_share_token()}")
    _assert_status(resp, 404)


def test_shared_report_expired_token_is_410(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)
    share = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    _assert_status(share, 200)
    token = share.json()["share_url"].rsplit("/", 1)[-1]

    with SessionLocal() as db:
        report = db.scalar(select(Report).where(Report.share_token == token))
        report.share_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()

    resp = client.get(f"/api/v1/shared-reports/{token}")
    _assert_status(resp, 410)


def test_browser_preflight_from_any_origin(client):
    resp = client.options(
        "/functions/v1/share-report",
        headers={
            "Origin": "https://ophthexam.lovable.app",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )
    _assert_status(resp, 200)
    assert resp.text == ""
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "content-type" in resp.headers["access-control-allow-headers"]


def test_api_routes_keep_origin_allow_list(client):
    resp = client.options(
        "/api/v1/patients",
        headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
    )
    _assert_status(resp, 400)


def test_share_malformed_body_without_bearer_is_401(client):
    resp = client.post(
        "/functions/v1/share-report",
        content="not json",
        headers={"Content-Type": "application/json"},
    )
    _assert_status(resp, 401)
    assert resp.json() == {"error": "Não autorizado"}


def test_share_rejects_non_object_body(client, approved_doctor):
    headers = approved_doctor()
    for body in ('["x"]', "not json", "42"):
        resp = client.post(
            "/functions/v1/share-report",
            content=body,
            headers={**headers, "Content-Type": "application/json"},
        )
        _assert_status(resp, 400)
        assert resp.json() == {"error": "Corpo da requisição deve ser um objeto JSON"}
        assert resp.headers["access-control-allow-origin"] == "*"


def test_share_rejects_non_string_exam_id(client, approved_doctor):
    headers = approved_doctor()
    resp = client.post("/functions/v1/share-report", json={"exam_id": 123}, headers=headers)
    _assert_status(resp, 400)
    assert resp.json() == {"error": "exam_id deve ser um texto"}


def test_share_requires_approved_profile(client, approved_doctor, login):
    pending = login("pending@example.com")
    resp = client.post(
        "/functions/v1/share-report",
        json={"exam_id": "00000000-0000-4000-8000-000000000000"},
        headers=pending,
    )
    _assert_status(resp, 403)
    assert resp.json() == {"error": "Acesso negado"}

    doctor = approved_doctor("suspended@example.com")
    exam_id = _create_exam(client, doctor)
    profile_id = client.get("/api/v1/auth/session", headers=doctor).json()["profile"]["id"]
    suspend = client.patch(
        f"/api/v1/admin/profiles/{profile_id}/status",
        json={"status": "suspended"},
        headers=login("admin@example.com"),
    )
    _assert_status(suspend, 200)

    resp = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=doctor)
    _assert_status(resp, 403)


def test_share_persistence_error_is_500(client, approved_doctor, monkeypatch):
    headers = approved_doctor()
    exam_id = _create_exam(client, headers)

    def _fail(*args, **kwargs):
        raise SQLAlchemyError("database unavailable")

    monkeypatch.setattr(functions_api, "issue_share_token", _fail)

    resp = client.post("/functions/v1/share-report", json={"exam_id": exam_id}, headers=headers)
    _assert_status(resp, 500)
    assert list(resp.json()) == ["error"]
    assert "database unavailable" in resp.json()["error"]
    assert resp.headers["access-control-allow-origin"] == "*"

    with SessionLocal() as db:
        assert db.scalar(select(Report).where(Report.exam_id == exam_id)) is None
