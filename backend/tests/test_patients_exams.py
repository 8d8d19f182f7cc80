from __future__ import annotations


def _assert_status(resp, expected: int) -> None:
    if resp.status_code == expected:
        return
    method = resp.request.method if resp.request else "UNKNOWN"
    path = resp.request.url.path if resp.request else "UNKNOWN"
    raise AssertionError(
        f"Expected {expected}, got {resp.status_code} for {method} {path}. Response: {resp.text}"
    )


def test_patient_list_scoped_to_doctor_and_sorted_desc(client, approved_doctor):
    doctor_1 = approved_doctor("doctor-list-1@example.com")

    create_a = client.post("/api/v1/patients", json={"name": "Ana", "gender": "F"}, headers=doctor_1)
    _assert_status(create_a, 201)
    create_b = client.post("/api/v1/patients", json={"name": "Bruno", "gender": "M"}, headers=doctor_1)
    _assert_status(create_b, 201)

    rows = client.get("/api/v1/patients?limit=10&offset=0", headers=doctor_1).json()
    assert [row["name"] for row in rows] == ["Bruno", "Ana"]

    doctor_2 = approved_doctor("doctor-list-2@example.com")
    _assert_status(client.post("/api/v1/patients", json={"name": "Clara"}, headers=doctor_2), 201)

    rows_2 = client.get("/api/v1/patients", headers=doctor_2).json()
    assert [row["name"] for row in rows_2] == ["Clara"]

    foreign = client.get(f"/api/v1/patients/{create_a.json()['id']}", headers=doctor_2)
    _assert_status(foreign, 404)


def test_patient_validation(client, approved_doctor):
    headers = approved_doctor()
    _assert_status(client.post("/api/v1/patients", json={"name": ""}, headers=headers), 422)
    _assert_status(client.post("/api/v1/patients", json={"name": "X", "gender": "Z"}, headers=headers), 422)


def test_exam_created_pending_and_filtered_by_status(client, approved_doctor):
    headers = approved_doctor()
    patient = client.post("/api/v1/patients", json={"name": "Diego"}, headers=headers)
    _assert_status(patient, 201)

    exam = client.post(
        "/api/v1/exams",
        json={
            "patient_id": patient.json()["id"],
            "exam_type": "oct_nerve",
            "eye": "both",
            "clinical_indication": "Suspeita de glaucoma",
        },
        headers=headers,
    )
    _assert_status(exam, 201)
    body = exam.json()
    assert body["status"] == "pending"
    assert body["exam_type"] == "oct_nerve"

    fetched = client.get(f"/api/v1/exams/{body['id']}", headers=headers)
    _assert_status(fetched, 200)
    assert fetched.json()["clinical_indication"] == "Suspeita de glaucoma"

    pending = client.get("/api/v1/exams?status=pending", headers=headers)
    assert [row["id"] for row in pending.json()] == [body["id"]]
    analyzing = client.get("/api/v1/exams?status=analyzing", headers=headers)
    assert analyzing.json() == []
    _assert_status(client.get("/api/v1/exams?status=unknown", headers=headers), 422)


def test_exam_requires_owned_patient_and_valid_type(client, approved_doctor):
    owner = approved_doctor("owner@example.com")
    patient = client.post("/api/v1/patients", json={"name": "Eva"}, headers=owner)
    other = approved_doctor("other@example.com")

    resp = client.post(
        "/api/v1/exams",
        json={"patient_id": patient.json()["id"], "exam_type": "oct_macular", "eye": "od"},
        headers=other,
    )
    _assert_status(resp, 404)

    resp = client.post(
        "/api/v1/exams",
        json={"patient_id": patient.json()["id"], "exam_type": "mri", "eye": "od"},
        headers=owner,
    )
    _assert_status(resp, 422)


def test_healthz(client):
    resp = client.get("/healthz")
    _assert_status(resp, 200)
    assert resp.json()["status"] == "ok"
