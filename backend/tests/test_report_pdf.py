from __future__ import annotations

import base64
from datetime import date, datetime, timezone
from io import BytesIO
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests
from PIL import Image
from sqlalchemy import select

from ophthexam.api.v1 import reports as reports_api
from ophthexam.db.models import AiAnalysis, ExamImage, Report
from ophthexam.db.session import SessionLocal
from ophthexam.schemas.report import ReportAnalysis, ReportData, ReportExam, ReportPatient, ReportProfile
from ophthexam.services import report_pdf
from ophthexam.services.report_pdf import (
    decode_data_url,
    fetch_image_as_data_url,
    generate_pdf_filename,
    render_report_pdf,
)


def _assert_status(resp, expected: int) -> None:
    if resp.status_code == expected:
        return
    method = resp.request.method if resp.request else "UNKNOWN"
    path = resp.request.url.path if resp.request else "UNKNOWN"
    raise AssertionError(
        f"Expected {expected}, got {resp.status_code} for {method} {path}. Response: {resp.text}"
    )


def _png_bytes(color=(40, 90, 160)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (64, 48), color).save(buf, format="PNG")
    return buf.getvalue()


def _png_data_url() -> str:
    return "data:image/png;base64," + base64.b64encode(_png_bytes()).decode("ascii")


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"", content_type: str = "image/png") -> None:
        self.status_code = status_code
        self.ok = status_code < 400
        self.content = content
        self.headers = {"content-type": content_type}


def _seed_exam_with_analysis(client, headers: dict[str, str]) -> str:
    patient = client.post(
        "/api/v1/patients",
        json={"name": "José da Silva", "gender": "M", "birth_date": "1960-01-15", "record_number": "77"},
        headers=headers,
    )
    _assert_status(patient, 201)
    exam = client.post(
        "/api/v1/exams",
        json={
            "patient_id": patient.json()["id"],
            "exam_type": "oct_nerve",
            "eye": "oe",
            "exam_date": "2024-03-05T10:00:00+00:00",
            "equipment": "Cirrus HD-OCT",
        },
        headers=headers,
    )
    _assert_status(exam, 201)
    exam_id = exam.json()["id"]

    with SessionLocal() as db:
        db.add(ExamImage(exam_id=exam_id, eye="oe", image_url=_png_data_url()))
        db.add(
            AiAnalysis(
                exam_id=exam_id,
                quality_score="boa",
                findings={"summary": "Espessura da CFNR preservada."},
                biomarkers={"escavacao": "limítrofe"},
                measurements={"CFNR media": {"value": "92 um", "reference": "80-110 um"}},
                diagnosis=["Sem sinais de glaucoma"],
                recommendations=["Controle anual"],
            )
        )
        db.commit()
    return exam_id


def test_filename_strips_accents_and_spaces():
    assert (
        generate_pdf_filename("José da Silva", "oct_macular", "2024-03-05")
        == "laudo_jose_da_silva_oct_macular_2024-03-05.pdf"
    )


def test_filename_maps_exam_type_labels():
    assert generate_pdf_filename("Ana", "oct_nerve", date(2024, 1, 2)).endswith("_oct_nervo_2024-01-02.pdf")
    assert generate_pdf_filename("Ana", "retinography", date(2024, 1, 2)).endswith("_retinografia_2024-01-02.pdf")


def test_filename_passes_unknown_type_and_drops_symbols():
    name = generate_pdf_filename("  Ção   O'Brien-Ü ", "angio", datetime(2023, 12, 31, 23, 0, tzinfo=timezone.utc))
    assert name == "laudo__cao_obrienu__angio_2023-12-31.pdf"


def test_fetch_image_as_data_url(monkeypatch):
    png = _png_bytes()
    monkeypatch.setattr(report_pdf.requests, "get", lambda url, timeout: _FakeResponse(200, png))

    data_url = fetch_image_as_data_url("https://cdn.example.com/a.png")
    assert data_url.startswith("data:image/png;base64,")
    assert decode_data_url(data_url) == ("image/png", png)


def test_fetch_image_returns_none_on_bad_status(monkeypatch):
    monkeypatch.setattr(report_pdf.requests, "get", lambda url, timeout: _FakeResponse(404))
    assert fetch_image_as_data_url("https://cdn.example.com/missing.png") is None


def test_fetch_image_returns_none_on_network_error(monkeypatch):
    def _boom(url, timeout):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(report_pdf.requests, "get", _boom)
    assert fetch_image_as_data_url("https://cdn.example.com/a.png") is None


def test_decode_data_url_rejects_garbage():
    assert decode_data_url("https://example.com/a.png") is None
    assert decode_data_url("data:image/png;base64,@@@") is None


def test_render_report_pdf_smoke():
    data = ReportData(
        exam=ReportExam(
            id="exam-1",
            exam_type="retinography",
            eye="both",
            exam_date=date(2024, 5, 1),
            status="completed",
            clinical_indication="Rastreio de retinopatia diabética",
        ),
        patient=ReportPatient(name="Maria", gender="F", birth_date=date(1970, 2, 3)),
        analysis=ReportAnalysis(
            findings={"macula": "sem alterações", "vasos": "calibre normal"},
            biomarkers=["Drusas presentes", {"name": "Hemorragias", "status": "normal"}],
            measurements={"CD ratio": 0.4},
            diagnosis=["Retina sem alterações"],
        ),
        doctor_notes="Paciente orientada.",
        profile=ReportProfile(
            full_name="Dra. Ana Lima",
            crm="12345",
            crm_uf="SP",
            clinic_name="Clínica Visão",
            clinic_logo_url=_png_data_url(),
            signature_url=_png_data_url(),
            include_logo_in_pdf=True,
            include_signature_in_pdf=True,
        ),
        image_url=_png_data_url(),
        approved_at=datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc),
    )

    pdf = render_report_pdf(data)
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 2000


def test_download_pdf_as_attachment(client, approved_doctor):
    headers = approved_doctor(full_name="Dr. Paulo", crm="999", crm_uf="RJ")
    exam_id = _seed_exam_with_analysis(client, headers)

    resp = client.get(f"/api/v1/exams/{exam_id}/report/pdf", headers=headers)
    _assert_status(resp, 200)
    assert resp.headers["content-type"] == "application/pdf"
    assert (
        resp.headers["content-disposition"]
        == 'attachment; filename="laudo_jose_da_silva_oct_nervo_2024-03-05.pdf"'
    )
    assert resp.content.startswith(b"%PDF")


def test_store_pdf_locally_records_url(client, approved_doctor):
    headers = approved_doctor()
    exam_id = _seed_exam_with_analysis(client, headers)

    resp = client.post(f"/api/v1/exams/{exam_id}/report/pdf", headers=headers)
    _assert_status(resp, 200)
    pdf_url = resp.json()["pdf_url"]
    assert pdf_url.startswith("file://")

    stored = Path(unquote(urlparse(pdf_url).path))
    assert stored.exists()
    assert stored.parent.name == exam_id
    assert stored.parent.parent.name == "report-pdfs"
    assert stored.read_bytes().startswith(b"%PDF")

    with SessionLocal() as db:
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
    assert report is not None
    assert report.pdf_url == pdf_url


def test_store_pdf_upload_failure_is_502(client, approved_doctor, monkeypatch):
    headers = approved_doctor()
    exam_id = _seed_exam_with_analysis(client, headers)
    monkeypatch.setattr(
        reports_api,
        "upload_report_pdf",
        lambda **kwargs: (None, RuntimeError("bucket unavailable")),
    )

    resp = client.post(f"/api/v1/exams/{exam_id}/report/pdf", headers=headers)
    _assert_status(resp, 502)

    with SessionLocal() as db:
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
    assert report is None or report.pdf_url is None


def test_pdf_of_foreign_exam_is_404(client, approved_doctor):
    owner = approved_doctor("owner@example.com")
    exam_id = _seed_exam_with_analysis(client, owner)
    other = approved_doctor("other@example.com")

    resp = client.get(f"/api/v1/exams/{exam_id}/report/pdf", headers=other)
    _assert_status(resp, 404)
