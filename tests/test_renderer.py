"""
Tests for PDF and QR rendering
"""
from datetime import date
from unittest.mock import patch

import pytest

from ledger.exceptions import RenderError
from ledger.qr import build_verification_url, generate_qr_png
from ledger.renderer import (
    CertificateRenderer, build_pdf_data, format_date_id, render_certificate, truncate,
)


class TestTruncate:
    """Tests for column truncation"""

    def test_short_text_unchanged(self):
        assert truncate("Lomba Robotik", 30) == "Lomba Robotik"

    def test_text_of_exact_limit_unchanged(self):
        assert truncate("x" * 30, 30) == "x" * 30

    def test_long_text_cut_with_ellipsis(self):
        name = "Olimpiade Sains Nasional Matematika SMAN"
        assert len(name) == 40
        result = truncate(name, 30)
        assert result == name[:27] + "..."
        assert len(result) == 30

    def test_multibyte_characters_not_split(self):
        text = "数学オリンピック全国大会決勝ラウンド"
        result = truncate(text, 10)
        assert result == text[:7] + "..."
        result.encode("utf-8")

    def test_none_is_empty(self):
        assert truncate(None, 14) == ""


class TestDateFormatting:

    def test_indonesian_month(self):
        assert format_date_id(date(2024, 3, 5)) == "5 Maret 2024"

    def test_none(self):
        assert format_date_id(None) == ""


class TestQRCode:
    """Tests for QR code generation"""

    def test_verification_url(self):
        assert build_verification_url("http://sekolah.sch.id/", "abc") == \
            "http://sekolah.sch.id/api/v1/verify/abc"

    def test_png_output(self):
        png = generate_qr_png("http://sekolah.sch.id/api/v1/verify/" + "a" * 32)
        assert png.startswith(b"\x89PNG")

    def test_empty_payload(self):
        with pytest.raises(RenderError):
            generate_qr_png("")

    def test_oversized_payload(self):
        with pytest.raises(RenderError):
            generate_qr_png("x" * 5000)


class TestBuildPDFData:
    """Tests for render input assembly"""

    def test_fields(self, certificate_detail, settings):
        data = build_pdf_data(certificate_detail, settings)

        assert data.certificate_number == "421.2/SKP/2024/0007"
        assert data.school_name == "SMA Negeri 1 Contoh"
        assert data.headmaster_nip == "196805121994032004"
        assert data.student.birth_date == "17 Agustus 2007"
        assert data.verification_url == "http://testserver/api/v1/verify/" + "a" * 32
        assert data.qr_code_png.startswith(b"\x89PNG")
        assert [a.no for a in data.achievements] == [1, 2]

    def test_missing_category_and_level_are_empty(self, certificate_detail, settings):
        data = build_pdf_data(certificate_detail, settings)

        assert data.achievements[1].category == ""
        assert data.achievements[1].level == ""

    def test_qr_failure_omits_image(self, certificate_detail, settings):
        with patch("ledger.renderer.generate_qr_png", side_effect=RenderError("qr down")):
            data = build_pdf_data(certificate_detail, settings)

        assert data.qr_code_png is None


class TestCertificateRenderer:
    """Tests for CertificateRenderer"""

    @pytest.fixture
    def renderer(self):
        return CertificateRenderer()

    def test_render_pdf(self, renderer, certificate_detail, settings):
        pdf = renderer.render(build_pdf_data(certificate_detail, settings))

        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    def test_render_without_qr(self, renderer, certificate_detail, settings):
        with patch("ledger.renderer.generate_qr_png", side_effect=RenderError("qr down")):
            pdf = render_certificate(certificate_detail, settings, renderer)

        assert pdf.startswith(b"%PDF")

    def test_render_many_achievements(self, renderer, certificate_detail, settings):
        template = certificate_detail.achievements[0]
        certificate_detail.achievements = [template] * 60

        pdf = renderer.render(build_pdf_data(certificate_detail, settings))

        assert pdf.startswith(b"%PDF")

    def test_render_failure(self, renderer, certificate_detail, settings):
        data = build_pdf_data(certificate_detail, settings)
        data.qr_code_png = b"not an image"

        with pytest.raises(RenderError):
            renderer.render(data)
