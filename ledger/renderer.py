"""
PDF rendering of achievement certificates (Surat Keterangan Prestasi).
"""

import logging
from datetime import date, datetime
from io import BytesIO
from typing import List, Optional

from pydantic import BaseModel, Field
from reportlab.lib.colors import Color, black, white
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config.settings import Settings
from .exceptions import RenderError
from .models import CertificateDetail
from .qr import build_verification_url, generate_qr_png

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

MONTHS_ID = [
    "", "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]

# Character limits of the achievement table columns
COMPETITION_NAME_LIMIT = 30
ORGANIZER_LIMIT = 22
CATEGORY_LIMIT = 14
RANK_LIMIT = 12
LEVEL_LIMIT = 14

TABLE_HEADERS = ["No", "Nama Lomba", "Penyelenggara", "Kategori", "Juara", "Tingkat", "Tahun"]
TABLE_WIDTHS_MM = [8, 45, 35, 22, 18, 22, 15]

NAVY = Color(0, 51 / 255, 102 / 255)
ROW_TINT = Color(240 / 255, 245 / 255, 1)
GREY = Color(0.5, 0.5, 0.5)

MARGIN = 20 * mm
PAGE_WIDTH, PAGE_HEIGHT = A4
# Closing sentence, QR code and signature must fit above the footer
SIGNATURE_BLOCK_HEIGHT = 70 * mm


def truncate(text: Optional[str], limit: int) -> str:
    """
    Cuts text to fit a fixed-width column.

    Text longer than ``limit`` characters is cut to ``limit - 3`` characters
    followed by "...". Lengths are counted in Unicode code points, so
    multi-byte characters are never split.
    """
    if text is None:
        return ""
    if limit <= len(ELLIPSIS):
        return text[:limit]
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def format_date_id(value: Optional[date]) -> str:
    """Formats a date with Indonesian month names, e.g. 5 Maret 2024."""
    if value is None:
        return ""
    return f"{value.day} {MONTHS_ID[value.month]} {value.year}"


class PDFStudent(BaseModel):
    full_name: str
    nisn: str
    birth_place: str = ""
    birth_date: str = ""
    class_name: str = ""


class PDFAchievement(BaseModel):
    no: int
    competition_name: str
    organizer: str
    category: str = ""
    rank: str = ""
    level: str = ""
    year: int


class CertificatePDFData(BaseModel):
    """Everything printed on a certificate."""
    certificate_number: str
    issued_at: datetime
    valid_until: Optional[date] = None
    school_name: str
    school_address: str
    student: PDFStudent
    achievements: List[PDFAchievement] = Field(default_factory=list)
    qr_code_png: Optional[bytes] = None
    verification_url: str = ""
    headmaster_name: str
    headmaster_nip: str = ""


def build_pdf_data(detail: CertificateDetail, settings: Settings) -> CertificatePDFData:
    """
    Assembles render input from a certificate detail.

    The QR code is left out when it cannot be generated.
    """
    achievements = [
        PDFAchievement(
            no=index,
            competition_name=achievement.competition_name,
            organizer=achievement.organizer,
            category=achievement.category_name or "",
            rank=achievement.rank or "",
            level=achievement.level_name or "",
            year=achievement.year,
        )
        for index, achievement in enumerate(detail.achievements, 1)
    ]

    verification_url = build_verification_url(settings.app_url, detail.qr_token)
    try:
        qr_png = generate_qr_png(verification_url)
    except RenderError as e:
        logger.warning(f"QR code omitted for {detail.certificate_number}: {e}")
        qr_png = None

    student = detail.student
    return CertificatePDFData(
        certificate_number=detail.certificate_number,
        issued_at=detail.issued_at,
        valid_until=detail.valid_until,
        school_name=settings.school_name,
        school_address=settings.school_address,
        student=PDFStudent(
            full_name=student.full_name,
            nisn=student.nisn,
            birth_place=student.birth_place or "",
            birth_date=format_date_id(student.birth_date),
            class_name=student.class_name or "",
        ),
        achievements=achievements,
        qr_code_png=qr_png,
        verification_url=verification_url,
        headmaster_name=settings.headmaster_name,
        headmaster_nip=settings.headmaster_nip,
    )


class CertificateRenderer:
    """Draws the certificate on an A4 page."""

    def render(self, data: CertificatePDFData) -> bytes:
        """
        Renders the certificate.

        Returns:
            bytes: PDF document

        Raises:
            RenderError: If the PDF cannot be produced
        """
        buffer = BytesIO()
        try:
            pdf = canvas.Canvas(buffer, pagesize=A4)
            pdf.setTitle(f"Surat Keterangan Prestasi {data.certificate_number}")
            pdf.setAuthor(data.school_name)

            y = PAGE_HEIGHT - MARGIN
            y = self._draw_header(pdf, data, y)
            y = self._draw_student(pdf, data, y)
            y = self._draw_table(pdf, data, y)
            if y < SIGNATURE_BLOCK_HEIGHT:
                pdf.showPage()
                y = PAGE_HEIGHT - MARGIN
            y = self._draw_closing(pdf, y)
            self._draw_signature(pdf, data, y)
            self._draw_footer(pdf, data)

            pdf.showPage()
            pdf.save()
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"Failed to render certificate {data.certificate_number}: {e}") from e

        return buffer.getvalue()

    def _draw_header(self, pdf: canvas.Canvas, data: CertificatePDFData, y: float) -> float:
        center = PAGE_WIDTH / 2

        pdf.setFillColor(NAVY)
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawCentredString(center, y - 6 * mm, data.school_name)

        pdf.setFillColor(black)
        pdf.setFont("Helvetica", 10)
        pdf.drawCentredString(center, y - 11 * mm, data.school_address)

        pdf.setStrokeColor(NAVY)
        pdf.setLineWidth(0.8 * mm)
        line_y = y - 15 * mm
        pdf.line(MARGIN, line_y, PAGE_WIDTH - MARGIN, line_y)

        pdf.setFont("Helvetica-Bold", 13)
        pdf.drawCentredString(center, line_y - 10 * mm, "SURAT KETERANGAN PRESTASI")
        pdf.setFont("Helvetica", 10)
        pdf.drawCentredString(center, line_y - 15 * mm, f"Nomor: {data.certificate_number}")

        y = line_y - 25 * mm
        pdf.drawString(MARGIN, y,
                       "Yang bertanda tangan di bawah ini, Kepala Sekolah menerangkan bahwa siswa berikut:")
        return y - 8 * mm

    def _draw_student(self, pdf: canvas.Canvas, data: CertificatePDFData, y: float) -> float:
        student = data.student
        birth = ", ".join(part for part in (student.birth_place, student.birth_date) if part)
        rows = [
            ("Nama Lengkap", student.full_name),
            ("NISN", student.nisn),
            ("Tempat, Tanggal Lahir", birth),
            ("Kelas", student.class_name),
        ]

        pdf.setFont("Helvetica", 10)
        for label, value in rows:
            pdf.drawString(MARGIN, y, label)
            pdf.drawString(MARGIN + 50 * mm, y, ":")
            pdf.drawString(MARGIN + 55 * mm, y, truncate(value, 60))
            y -= 6 * mm

        y -= 4 * mm
        pdf.drawString(MARGIN, y, "Telah meraih prestasi sebagai berikut:")
        return y - 8 * mm

    def _draw_table_header(self, pdf: canvas.Canvas, y: float) -> float:
        height = 7 * mm
        x = MARGIN
        pdf.setFont("Helvetica-Bold", 9)
        pdf.setStrokeColor(black)
        pdf.setLineWidth(0.2 * mm)
        for header, width_mm in zip(TABLE_HEADERS, TABLE_WIDTHS_MM):
            width = width_mm * mm
            pdf.setFillColor(NAVY)
            pdf.rect(x, y - height, width, height, stroke=1, fill=1)
            pdf.setFillColor(white)
            pdf.drawCentredString(x + width / 2, y - height + 2.3 * mm, header)
            x += width
        return y - height

    def _draw_table(self, pdf: canvas.Canvas, data: CertificatePDFData, y: float) -> float:
        row_height = 6 * mm
        y = self._draw_table_header(pdf, y)

        for index, achievement in enumerate(data.achievements):
            if y - row_height < 50 * mm:
                pdf.showPage()
                y = self._draw_table_header(pdf, PAGE_HEIGHT - MARGIN)

            cells = [
                (str(achievement.no), "center"),
                (truncate(achievement.competition_name, COMPETITION_NAME_LIMIT), "left"),
                (truncate(achievement.organizer, ORGANIZER_LIMIT), "left"),
                (truncate(achievement.category, CATEGORY_LIMIT), "center"),
                (truncate(achievement.rank, RANK_LIMIT), "center"),
                (truncate(achievement.level, LEVEL_LIMIT), "center"),
                (str(achievement.year), "center"),
            ]

            fill = index % 2 == 0
            x = MARGIN
            pdf.setFont("Helvetica", 8)
            for (text, align), width_mm in zip(cells, TABLE_WIDTHS_MM):
                width = width_mm * mm
                pdf.setFillColor(ROW_TINT if fill else white)
                pdf.rect(x, y - row_height, width, row_height, stroke=1, fill=1)
                pdf.setFillColor(black)
                baseline = y - row_height + 2 * mm
                if align == "center":
                    pdf.drawCentredString(x + width / 2, baseline, text)
                else:
                    pdf.drawString(x + 1.5 * mm, baseline, text)
                x += width
            y -= row_height

        return y - 5 * mm

    def _draw_closing(self, pdf: canvas.Canvas, y: float) -> float:
        pdf.setFillColor(black)
        pdf.setFont("Helvetica", 10)
        pdf.drawString(
            MARGIN, y,
            "Surat keterangan ini dibuat dengan sebenarnya untuk dapat dipergunakan sebagaimana mestinya."
        )
        return y - 10 * mm

    def _draw_signature(self, pdf: canvas.Canvas, data: CertificatePDFData, y: float):
        if data.qr_code_png:
            pdf.setFont("Helvetica", 8)
            pdf.drawString(MARGIN, y, "Scan untuk verifikasi:")
            size = 35 * mm
            pdf.drawImage(ImageReader(BytesIO(data.qr_code_png)), MARGIN, y - 2 * mm - size, size, size)

        sign_center = PAGE_WIDTH - MARGIN - 32.5 * mm
        pdf.setFont("Helvetica", 10)
        pdf.drawCentredString(sign_center, y, f"Diterbitkan, {format_date_id(data.issued_at.date())}")
        pdf.drawCentredString(sign_center, y - 5 * mm, "Kepala Sekolah,")
        if data.valid_until:
            pdf.setFont("Helvetica", 8)
            pdf.drawCentredString(sign_center, y - 10 * mm,
                                  f"Berlaku sampai {format_date_id(data.valid_until)}")

        name_y = y - 28 * mm
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawCentredString(sign_center, name_y, data.headmaster_name)
        if data.headmaster_nip:
            pdf.setFont("Helvetica", 9)
            pdf.drawCentredString(sign_center, name_y - 5 * mm, f"NIP. {data.headmaster_nip}")

    def _draw_footer(self, pdf: canvas.Canvas, data: CertificatePDFData):
        pdf.setFillColor(GREY)
        pdf.setFont("Helvetica-Oblique", 7)
        pdf.drawCentredString(
            PAGE_WIDTH / 2, 12 * mm,
            f"Dokumen ini diterbitkan secara digital pada {data.issued_at.strftime('%d/%m/%Y %H:%M')} "
            f"| Verifikasi keaslian dokumen dengan scan QR Code"
        )


def render_certificate(detail: CertificateDetail, settings: Settings,
                       renderer: Optional[CertificateRenderer] = None) -> bytes:
    """Builds the render input and renders the PDF."""
    renderer = renderer or CertificateRenderer()
    return renderer.render(build_pdf_data(detail, settings))
