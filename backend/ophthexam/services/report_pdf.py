from __future__ import annotations

import base64
import binascii
import re
import time
import unicodedata
from datetime import date, datetime, timezone
from io import BytesIO
from typing import Any

import boto3
import requests
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    HRFlowable,
    Image as RLImage,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ophthexam.core.config import Settings
from ophthexam.db.models import Exam, Profile, Report
from ophthexam.schemas.report import (
    ReportAnalysis,
    ReportData,
    ReportExam,
    ReportPatient,
    ReportProfile,
)

logger = structlog.get_logger(__name__)

DISCLAIMER = (
    "Este laudo foi gerado com auxílio de Inteligência Artificial e constitui uma ferramenta de "
    "APOIO DIAGNÓSTICO. A interpretação final e a conduta clínica são de exclusiva responsabilidade "
    "do médico assistente. Este documento não substitui a avaliação clínica completa do paciente."
)

EXAM_TYPE_TITLES = {
    "oct_macular": "OCT MACULAR",
    "oct_nerve": "OCT NERVO ÓPTICO",
    "retinography": "RETINOGRAFIA",
}

EXAM_TYPE_FILENAME_LABELS = {
    "oct_macular": "oct_macular",
    "oct_nerve": "oct_nervo",
    "retinography": "retinografia",
}

EYE_LABELS = {
    "od": "OD (Olho Direito)",
    "oe": "OE (Olho Esquerdo)",
    "both": "Ambos os Olhos",
}

MONTHS_PT = [
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
]

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<b64>;base64)?,(?P<payload>.*)$", re.DOTALL)


def _as_date(value: datetime | date | str) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_date(datetime.fromisoformat(text))
    except ValueError:
        return date.fromisoformat(text[:10])


def format_date_pt(value: datetime | date | str) -> str:
    d = _as_date(value)
    return f"{d.day:02d} de {MONTHS_PT[d.month - 1]} de {d.year}"


def generate_pdf_filename(patient_name: str, exam_type: str, exam_date: datetime | date | str) -> str:
    decomposed = unicodedata.normalize("NFD", patient_name)
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    alnum = re.sub(r"[^a-zA-Z0-9\s]", "", without_marks)
    safe_name = re.sub(r"\s+", "_", alnum).lower()

    label = EXAM_TYPE_FILENAME_LABELS.get(exam_type, exam_type)
    return f"laudo_{safe_name}_{label}_{_as_date(exam_date).isoformat()}.pdf"


def fetch_image_as_data_url(image_url: str, *, timeout: float = 10.0) -> str | None:
    try:
        resp = requests.get(image_url, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("image_fetch_failed", url=image_url, error=str(exc))
        return None
    if not resp.ok:
        logger.warning("image_fetch_bad_status", url=image_url, status_code=resp.status_code)
        return None
    mime = (resp.headers.get("content-type") or "application/octet-stream").split(";")[0].strip()
    encoded = base64.b64encode(resp.content).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def decode_data_url(data_url: str) -> tuple[str, bytes] | None:
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        return None
    mime = match.group("mime") or "text/plain"
    payload = match.group("payload")
    try:
        raw = base64.b64decode(payload, validate=True) if match.group("b64") else payload.encode("utf-8")
    except (binascii.Error, ValueError):
        return None
    return mime, raw


def embed_remote_images(data: ReportData, *, timeout: float = 10.0) -> ReportData:
    """Swap remote image URLs for data URLs so the renderer never touches the network."""

    def _embed(url: str | None) -> str | None:
        if not url or url.startswith("data:"):
            return url
        return fetch_image_as_data_url(url, timeout=timeout)

    profile = data.profile.model_copy(
        update={
            "clinic_logo_url": _embed(data.profile.clinic_logo_url) if data.profile.include_logo_in_pdf else None,
            "signature_url": _embed(data.profile.signature_url)
            if data.profile.include_signature_in_pdf
            else None,
        }
    )
    return data.model_copy(update={"image_url": _embed(data.image_url), "profile": profile})


def _format_findings(findings: Any) -> str:
    if not findings:
        return ""
    if isinstance(findings, str):
        return findings
    if isinstance(findings, dict):
        for key in ("summary", "description", "text"):
            if isinstance(findings.get(key), str):
                return findings[key]
        lines = []
        for key, value in findings.items():
            if isinstance(value, str):
                lines.append(f"{key}: {value}")
            elif isinstance(value, (dict, list)):
                lines.append(f"{key}: {value}")
        return "\n".join(lines)
    return str(findings)


def _biomarker_status(biomarker: Any) -> str:
    if isinstance(biomarker, str):
        lower = biomarker.lower()
        if any(word in lower for word in ("anormal", "alterado", "presente")):
            return "abnormal"
        if any(word in lower for word in ("limítrofe", "borderline", "suspeito")):
            return "borderline"
    if isinstance(biomarker, dict) and biomarker.get("status"):
        status = str(biomarker["status"]).lower()
        if status in {"abnormal", "anormal"}:
            return "abnormal"
        if status == "borderline":
            return "borderline"
    return "normal"


def _biomarker_items(biomarkers: Any) -> list[tuple[str, str]]:
    if isinstance(biomarkers, list):
        items = []
        for entry in biomarkers:
            label = entry if isinstance(entry, str) else str((entry or {}).get("name") or entry)
            items.append((label, _biomarker_status(entry)))
        return items
    if isinstance(biomarkers, dict):
        items = []
        for key, value in biomarkers.items():
            if isinstance(value, dict):
                shown = value.get("status", "presente")
            else:
                shown = value
            items.append((f"{key}: {shown}", _biomarker_status(value)))
        return items
    return [(str(biomarkers), "normal")] if biomarkers else []


def render_report_pdf(data: ReportData) -> bytes:
    """Render the report to PDF bytes. Only ``data:`` image sources are embedded."""

    def _s(v) -> str:
        return "-" if v is None or v == "" else str(v)

    def _esc(v) -> str:
        return _s(v).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")

    def _image_flowable(source: str | None, *, max_w: float, max_h: float) -> RLImage | None:
        decoded = decode_data_url(source) if source else None
        if decoded is None:
            return None
        _mime, raw = decoded
        try:
            with PILImage.open(BytesIO(raw)) as pil_image:
                src_w, src_h = pil_image.size
                scale = min(max_w / max(src_w, 1), max_h / max(src_h, 1))
                normalized = pil_image.convert("RGB")
                image_buffer = BytesIO()
                normalized.save(image_buffer, format="JPEG", quality=88, optimize=True)
                image_buffer.seek(0)
        except (UnidentifiedImageError, OSError, ValueError):
            return None
        flowable = RLImage(image_buffer, width=src_w * scale, height=src_h * scale)
        flowable.hAlign = "CENTER"
        return flowable

    def _grid(rows: list[list[str]]) -> Table:
        cells = [
            [Paragraph(f"<b>{_esc(label)}</b>", styles["Small"]), Paragraph(_esc(value), styles["Small"])]
            for label, value in rows
        ]
        table = Table(cells, colWidths=[38 * mm, 136 * mm])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#F5F8FC")),
                    ("BOX", (0, 0), (-1, -1), 0.75, colors.HexColor("#D5DEE8")),
                    ("LINEBELOW", (0, 0), (-1, -2), 0.45, colors.HexColor("#E3EAF2")),
                    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ("LEFTPADDING", (0, 0), (-1, -1), 8),
                    ("RIGHTPADDING", (0, 0), (-1, -1), 8),
                    ("TOPPADDING", (0, 0), (-1, -1), 5),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
                ]
            )
        )
        return table

    def _callout(text: str, *, tone: str = "neutral") -> Table:
        palette = {
            "neutral": ("#F8FAFC", "#D8E1EB"),
            "warn": ("#FFFBEB", "#F3C98B"),
        }
        bg, border = palette.get(tone, palette["neutral"])
        table = Table([[Paragraph(_esc(text).replace("\n", "<br/>"), styles["Small"])]], colWidths=[174 * mm])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(bg)),
                    ("BOX", (0, 0), (-1, -1), 0.8, colors.HexColor(border)),
                    ("LEFTPADDING", (0, 0), (-1, -1), 9),
                    ("RIGHTPADDING", (0, 0), (-1, -1), 9),
                    ("TOPPADDING", (0, 0), (-1, -1), 7),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 7),
                ]
            )
        )
        return table

    def _bullets(items: list[str]) -> list[Paragraph]:
        return [Paragraph(f'<font color="#1E3A5F">•</font> {_esc(item)}', styles["Small"]) for item in items]

    exam = data.exam
    patient = data.patient
    analysis = data.analysis
    profile = data.profile
    exam_title = EXAM_TYPE_TITLES.get(exam.exam_type, exam.exam_type.upper())
    generated_at = datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC")

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=16 * mm,
        title=f"Laudo de {exam_title}",
        author=profile.full_name,
    )

    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="ClinicName",
            parent=styles["Title"],
            fontName="Helvetica-Bold",
            fontSize=16,
            leading=20,
            alignment=0,
            textColor=colors.HexColor("#1E3A5F"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="ClinicDetails",
            parent=styles["BodyText"],
            fontName="Helvetica",
            fontSize=9,
            leading=12.6,
            textColor=colors.HexColor("#666666"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="ReportTitle",
            parent=styles["Title"],
            fontName="Helvetica-Bold",
            fontSize=14,
            leading=18,
            spaceBefore=8,
            spaceAfter=10,
            textColor=colors.HexColor("#1E3A5F"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="H2",
            parent=styles["Heading2"],
            fontName="Helvetica-Bold",
            fontSize=11,
            leading=15,
            spaceBefore=10,
            spaceAfter=6,
            textColor=colors.HexColor("#1E3A5F"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="Small",
            parent=styles["BodyText"],
            fontName="Helvetica",
            fontSize=9.4,
            leading=13,
            textColor=colors.HexColor("#222222"),
        )
    )

    def on_page(c, d):
        w, _h = A4
        c.saveState()
        c.setFillColor(colors.HexColor("#9CA3AF"))
        c.setFont("Helvetica", 8)
        c.drawString(d.leftMargin, d.bottomMargin - 10, f"Gerado em {generated_at}")
        c.drawRightString(w - d.rightMargin, d.bottomMargin - 10, f"Página {c.getPageNumber()}")
        c.restoreState()

    story: list[object] = []

    # Clinic header.
    clinic_details = []
    if profile.clinic_address:
        clinic_details.append(_esc(profile.clinic_address))
    contact = []
    if profile.clinic_phone:
        contact.append(f"Tel: {_esc(profile.clinic_phone)}")
    if profile.clinic_cnpj:
        contact.append(f"CNPJ: {_esc(profile.clinic_cnpj)}")
    if contact:
        clinic_details.append(" | ".join(contact))
    header_left = [
        Paragraph(_esc(profile.clinic_name or "Consultório Oftalmológico"), styles["ClinicName"]),
        Paragraph("<br/>".join(clinic_details), styles["ClinicDetails"]),
    ]
    logo = (
        _image_flowable(profile.clinic_logo_url, max_w=28 * mm, max_h=28 * mm)
        if profile.include_logo_in_pdf
        else None
    )
    header = Table([[header_left, logo or ""]], colWidths=[144 * mm, 30 * mm])
    header.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, 0), 1.6, colors.HexColor("#1E3A5F")),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
            ]
        )
    )
    story.append(header)
    story.append(Paragraph(f"LAUDO DE {_esc(exam_title)}", styles["ReportTitle"]))

    # Patient.
    story.append(Paragraph("DADOS DO PACIENTE", styles["H2"]))
    patient_rows = [["Paciente", patient.name]]
    if patient.record_number:
        patient_rows.append(["Prontuário", patient.record_number])
    if patient.birth_date:
        patient_rows.append(["Data Nasc.", patient.birth_date.strftime("%d/%m/%Y")])
    if patient.gender:
        patient_rows.append(["Sexo", "Masculino" if patient.gender == "M" else "Feminino"])
    story.append(_grid(patient_rows))

    # Exam.
    story.append(Paragraph("DADOS DO EXAME", styles["H2"]))
    exam_rows = [
        ["Tipo", exam_title],
        ["Olho", EYE_LABELS.get(exam.eye, exam.eye)],
        ["Data", format_date_pt(exam.exam_date)],
    ]
    if exam.equipment:
        exam_rows.append(["Equipamento", exam.equipment])
    if exam.clinical_indication:
        exam_rows.append(["Indicação Clínica", exam.clinical_indication])
    story.append(_grid(exam_rows))

    exam_image = _image_flowable(data.image_url, max_w=150 * mm, max_h=70 * mm)
    if exam_image is not None:
        story.append(Paragraph("IMAGEM DO EXAME", styles["H2"]))
        story.append(exam_image)

    if analysis is not None:
        if analysis.quality_score:
            story.append(Paragraph("QUALIDADE DA IMAGEM", styles["H2"]))
            story.append(Paragraph(_esc(analysis.quality_score), styles["Small"]))

        findings_text = _format_findings(analysis.findings)
        if findings_text:
            story.append(Paragraph("ACHADOS", styles["H2"]))
            story.append(_callout(findings_text))

        biomarkers = _biomarker_items(analysis.biomarkers)
        if biomarkers:
            story.append(Paragraph("BIOMARCADORES", styles["H2"]))
            status_colors = {"abnormal": "#991B1B", "borderline": "#92400E", "normal": "#065F46"}
            for label, status in biomarkers:
                story.append(
                    Paragraph(f'<font color="{status_colors[status]}"><b>{_esc(label)}</b></font>', styles["Small"])
                )

        if analysis.measurements:
            story.append(Paragraph("MEDIÇÕES", styles["H2"]))
            rows = [["Parâmetro", "Valor", "Referência"]]
            for key, value in analysis.measurements.items():
                if isinstance(value, dict):
                    rows.append([key, _s(value.get("value", value)), _s(value.get("reference") or "-")])
                else:
                    rows.append([key, _s(value), "-"])
            measurements = Table(rows, colWidths=[70 * mm, 52 * mm, 52 * mm], repeatRows=1)
            measurements.setStyle(
                TableStyle(
                    [
                        ("FONT", (0, 0), (-1, -1), "Helvetica", 9),
                        ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 9),
                        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F5")),
                        ("LINEBELOW", (0, 0), (-1, 0), 1.2, colors.HexColor("#1E3A5F")),
                        ("LINEBELOW", (0, 1), (-1, -1), 0.45, colors.HexColor("#E0E0E0")),
                        ("LEFTPADDING", (0, 0), (-1, -1), 6),
                        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
                        ("TOPPADDING", (0, 0), (-1, -1), 4),
                        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                    ]
                )
            )
            story.append(measurements)

        if analysis.diagnosis:
            story.append(Paragraph("IMPRESSÃO DIAGNÓSTICA", styles["H2"]))
            story.extend(_bullets(analysis.diagnosis))

        if analysis.recommendations:
            story.append(Paragraph("RECOMENDAÇÕES", styles["H2"]))
            story.extend(_bullets(analysis.recommendations))

    if data.doctor_notes:
        story.append(Paragraph("OBSERVAÇÕES DO MÉDICO", styles["H2"]))
        story.append(Paragraph(_esc(data.doctor_notes), styles["Small"]))

    story.append(Spacer(1, 10))
    story.append(Paragraph("<b>AVISO IMPORTANTE</b>", styles["Small"]))
    story.append(_callout(DISCLAIMER, tone="warn"))

    # Signature block.
    story.append(Spacer(1, 18))
    signature = (
        _image_flowable(profile.signature_url, max_w=50 * mm, max_h=20 * mm)
        if profile.include_signature_in_pdf
        else None
    )
    if signature is not None:
        story.append(signature)
    story.append(HRFlowable(width="40%", thickness=0.8, color=colors.HexColor("#333333"), hAlign="CENTER"))
    story.append(Paragraph(f"<para alignment='center'>{_esc(profile.full_name)}</para>", styles["Small"]))
    story.append(
        Paragraph(f"<para alignment='center'>CRM {_esc(profile.crm)}/{_esc(profile.crm_uf)}</para>", styles["Small"])
    )
    if data.approved_at:
        story.append(Spacer(1, 6))
        story.append(
            Paragraph(
                f"<para alignment='center'>Laudo aprovado em {format_date_pt(data.approved_at)} "
                "• Documento gerado eletronicamente</para>",
                styles["ClinicDetails"],
            )
        )

    doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
    buffer.seek(0)
    return buffer.read()


def upload_report_pdf(*, pdf_bytes: bytes, exam_id: str, settings: Settings) -> tuple[str | None, Exception | None]:
    key = f"{exam_id}/{int(time.time() * 1000)}.pdf"

    if settings.resolved_storage_mode == "local":
        try:
            local_path = (settings.local_report_dir / key).resolve()
            local_path.parent.mkdir(parents=True, exist_ok=True)
            local_path.write_bytes(pdf_bytes)
        except OSError as exc:
            logger.error("report_pdf_local_write_failed", exam_id=exam_id, error=str(exc))
            return None, exc
        return local_path.as_uri(), None

    s3 = boto3.client("s3", region_name=settings.aws_region)
    try:
        s3.put_object(
            Bucket=settings.s3_report_bucket,
            Key=key,
            Body=pdf_bytes,
            ContentType="application/pdf",
        )
        url = s3.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": settings.s3_report_bucket, "Key": key},
            ExpiresIn=settings.pdf_signed_url_ttl_seconds,
        )
    except (BotoCoreError, ClientError) as exc:
        logger.error("report_pdf_upload_failed", exam_id=exam_id, key=key, error=str(exc))
        return None, exc
    return url, None


def update_report_pdf_url(db: Session, *, exam_id: str, pdf_url: str) -> Exception | None:
    try:
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
        if report is None:
            db.add(Report(exam_id=exam_id, pdf_url=pdf_url))
        else:
            report.pdf_url = pdf_url
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("report_pdf_url_update_failed", exam_id=exam_id, error=str(exc))
        return exc
    return None


def build_report_data(db: Session, exam: Exam) -> ReportData:
    report = exam.report
    analysis_row = exam.analyses[0] if exam.analyses else None
    profile_row = None
    if report is not None and report.approved_by:
        profile_row = db.get(Profile, report.approved_by)
    if profile_row is None and exam.doctor_id:
        profile_row = db.get(Profile, exam.doctor_id)

    analysis = None
    if analysis_row is not None:
        analysis = ReportAnalysis(
            quality_score=analysis_row.quality_score,
            findings=analysis_row.findings,
            biomarkers=analysis_row.biomarkers,
            measurements=analysis_row.measurements,
            diagnosis=list(analysis_row.diagnosis or []),
            recommendations=list(analysis_row.recommendations or []),
            risk_classification=analysis_row.risk_classification,
        )

    profile = (
        ReportProfile(
            full_name=profile_row.full_name,
            crm=profile_row.crm,
            crm_uf=profile_row.crm_uf,
            clinic_name=profile_row.clinic_name,
            clinic_address=profile_row.clinic_address,
            clinic_phone=profile_row.clinic_phone,
            clinic_cnpj=profile_row.clinic_cnpj,
            clinic_logo_url=profile_row.clinic_logo_url,
            signature_url=profile_row.signature_url,
            include_logo_in_pdf=profile_row.include_logo_in_pdf,
            include_signature_in_pdf=profile_row.include_signature_in_pdf,
        )
        if profile_row is not None
        else ReportProfile(full_name="")
    )

    return ReportData(
        exam=ReportExam(
            id=exam.id,
            exam_type=exam.exam_type,
            eye=exam.eye,
            exam_date=exam.exam_date,
            equipment=exam.equipment,
            clinical_indication=exam.clinical_indication,
            status=exam.status,
        ),
        patient=ReportPatient(
            name=exam.patient.name,
            birth_date=exam.patient.birth_date,
            record_number=exam.patient.record_number,
            gender=exam.patient.gender,
        ),
        analysis=analysis,
        doctor_notes=report.doctor_notes if report is not None else None,
        profile=profile,
        image_url=exam.images[0].image_url if exam.images else None,
        approved_at=report.approved_at if report is not None else None,
    )
