"""
Tests for the certificate record store
"""
import uuid
from datetime import datetime

import pytest

from ledger.database import AchievementRepository, CertificateAchievementRow, StudentRepository
from ledger.exceptions import (
    DuplicateCertificateNumberError, DuplicateVerificationTokenError, InvalidReferenceError,
)
from ledger.generator import generate_verification_token
from ledger.models import Certificate, CertificateFilter, CertificateStatus


def make_certificate(student_id, number="421.2/SKP/2024/0001", issued_at=datetime(2024, 3, 5, 10, 30),
                     issued_by=None, token=None) -> Certificate:
    return Certificate(
        id=uuid.uuid4(),
        student_id=student_id,
        certificate_number=number,
        issued_at=issued_at,
        issued_by=issued_by,
        qr_token=token or generate_verification_token(),
        status=CertificateStatus.ACTIVE,
        notes="",
    )


def link_count(db_manager, certificate_id=None) -> int:
    with db_manager.get_session() as session:
        query = session.query(CertificateAchievementRow)
        if certificate_id:
            query = query.filter(CertificateAchievementRow.certificate_id == certificate_id)
        return query.count()


class TestCertificateCreate:
    """Tests for atomic certificate creation"""

    def test_certificate_and_links_stored(self, certificate_repo, db_manager, seed):
        certificate = make_certificate(seed.student, issued_by=seed.user)

        certificate_repo.create(certificate, [seed.olympiad, seed.robotics, seed.debate])

        stored = certificate_repo.find_by_id(certificate.id)
        assert stored.certificate_number == "421.2/SKP/2024/0001"
        assert stored.status == CertificateStatus.ACTIVE
        assert stored.student_name == "Budi Santoso"
        assert stored.student_nisn == "0051234567"
        assert stored.issued_by_name == "Operator Sekolah"
        assert link_count(db_manager, certificate.id) == 3

    def test_unknown_achievement_rolls_back(self, certificate_repo, db_manager, seed):
        certificate = make_certificate(seed.student)

        with pytest.raises(InvalidReferenceError):
            certificate_repo.create(certificate, [seed.olympiad, uuid.uuid4()])

        assert certificate_repo.find_by_id(certificate.id) is None
        assert link_count(db_manager) == 0

    def test_unknown_student_rejected(self, certificate_repo, seed):
        with pytest.raises(InvalidReferenceError):
            certificate_repo.create(make_certificate(uuid.uuid4()), [seed.olympiad])

    def test_duplicate_number(self, certificate_repo, db_manager, seed):
        certificate_repo.create(make_certificate(seed.student), [seed.olympiad])
        duplicate = make_certificate(seed.student)

        with pytest.raises(DuplicateCertificateNumberError) as exc_info:
            certificate_repo.create(duplicate, [seed.robotics])

        assert exc_info.value.retryable
        assert certificate_repo.find_by_id(duplicate.id) is None
        assert link_count(db_manager) == 1

    def test_duplicate_token(self, certificate_repo, seed):
        token = generate_verification_token()
        certificate_repo.create(make_certificate(seed.student, token=token), [seed.olympiad])

        with pytest.raises(DuplicateVerificationTokenError):
            certificate_repo.create(
                make_certificate(seed.student, number="421.2/SKP/2024/0002", token=token),
                [seed.olympiad],
            )


class TestCertificateQueries:
    """Tests for certificate lookups"""

    @pytest.fixture
    def stored(self, certificate_repo, seed):
        certificate = make_certificate(seed.student, issued_by=seed.user)
        certificate_repo.create(certificate, [seed.olympiad, seed.robotics, seed.debate])
        return certificate

    def test_not_found_is_none(self, certificate_repo, seed):
        assert certificate_repo.find_by_id(uuid.uuid4()) is None
        assert certificate_repo.find_by_token("0" * 32) is None
        assert certificate_repo.find_detail(uuid.uuid4()) is None

    def test_find_by_token(self, certificate_repo, stored):
        found = certificate_repo.find_by_token(stored.qr_token)
        assert found.id == stored.id
        assert found.student_name == "Budi Santoso"

    def test_find_by_token_does_not_resolve_issuer(self, certificate_repo, stored, seed):
        found = certificate_repo.find_by_token(stored.qr_token)

        assert found.issued_by == seed.user
        assert found.issued_by_name is None

    def test_detail_orders_achievements(self, certificate_repo, stored, seed):
        detail = certificate_repo.find_detail(stored.id)

        assert detail.student.full_name == "Budi Santoso"
        assert detail.student.class_name == "XII IPA 1"
        assert [a.id for a in detail.achievements] == [seed.robotics, seed.debate, seed.olympiad]

    def test_detail_resolves_names_and_attachments(self, certificate_repo, stored, seed):
        detail = certificate_repo.find_detail(stored.id)
        olympiad = next(a for a in detail.achievements if a.id == seed.olympiad)
        robotics = next(a for a in detail.achievements if a.id == seed.robotics)

        assert olympiad.category_name == "Akademik"
        assert olympiad.level_name == "Nasional"
        assert [a.label for a in olympiad.attachments] == ["Piagam"]
        assert robotics.category_name is None
        assert robotics.attachments == []

    def test_count_by_year(self, certificate_repo, seed):
        certificate_repo.create(make_certificate(seed.student), [seed.olympiad])
        certificate_repo.create(
            make_certificate(seed.student, number="421.2/SKP/2024/0002"), [seed.olympiad]
        )
        certificate_repo.create(
            make_certificate(seed.student, number="421.2/SKP/2023/0001",
                             issued_at=datetime(2023, 12, 31, 23, 59)),
            [seed.olympiad],
        )

        assert certificate_repo.count_by_year(2024) == 2
        assert certificate_repo.count_by_year(2023) == 1
        assert certificate_repo.count_by_year(2025) == 0

    def test_find_all_filters_and_pages(self, certificate_repo, seed):
        for sequence in range(1, 4):
            certificate_repo.create(
                make_certificate(seed.student, number=f"421.2/SKP/2024/{sequence:04d}",
                                 issued_at=datetime(2024, 3, sequence)),
                [seed.olympiad],
            )
        other = make_certificate(seed.other_student, number="421.2/SKP/2024/0004",
                                 issued_at=datetime(2024, 3, 4))
        certificate_repo.create(other, [seed.foreign])
        certificate_repo.revoke(other.id)

        items, total = certificate_repo.find_all(CertificateFilter(page=1, per_page=2))
        assert total == 4
        assert [c.certificate_number for c in items] == ["421.2/SKP/2024/0004", "421.2/SKP/2024/0003"]

        items, total = certificate_repo.find_all(CertificateFilter(student_id=str(seed.student), page=2, per_page=2))
        assert total == 3
        assert [c.certificate_number for c in items] == ["421.2/SKP/2024/0001"]

        items, total = certificate_repo.find_all(CertificateFilter(status=CertificateStatus.REVOKED))
        assert total == 1
        assert items[0].id == other.id


class TestCertificateMutations:
    """Tests for PDF URL and revocation updates"""

    def test_update_pdf_url(self, certificate_repo, seed):
        certificate = make_certificate(seed.student)
        certificate_repo.create(certificate, [seed.olympiad])

        assert certificate_repo.update_pdf_url(certificate.id, "http://localhost:9000/skp-test/a.pdf")
        assert certificate_repo.find_by_id(certificate.id).pdf_url == "http://localhost:9000/skp-test/a.pdf"

    def test_update_unknown(self, certificate_repo, seed):
        assert not certificate_repo.update_pdf_url(uuid.uuid4(), "http://x")
        assert not certificate_repo.revoke(uuid.uuid4())

    def test_revoke_sets_status_and_timestamp(self, certificate_repo, seed):
        certificate = make_certificate(seed.student)
        certificate_repo.create(certificate, [seed.olympiad])

        assert certificate_repo.revoke(certificate.id)

        revoked = certificate_repo.find_by_id(certificate.id)
        assert revoked.status == CertificateStatus.REVOKED
        assert revoked.is_revoked
        assert revoked.updated_at is not None

    def test_revoke_only_active(self, certificate_repo, seed):
        certificate = make_certificate(seed.student)
        certificate_repo.create(certificate, [seed.olympiad])

        assert certificate_repo.revoke(certificate.id)
        assert not certificate_repo.revoke(certificate.id)


class TestReadRepositories:
    """Tests for student and achievement lookups"""

    def test_find_student(self, db_manager, seed):
        repo = StudentRepository(db_manager)
        assert repo.find_by_id(seed.student).nisn == "0051234567"
        assert repo.find_by_id(uuid.uuid4()) is None

    def test_find_achievements(self, db_manager, seed):
        repo = AchievementRepository(db_manager)
        found = repo.find_by_ids([seed.olympiad, seed.foreign, uuid.uuid4()])

        assert {a.id for a in found} == {seed.olympiad, seed.foreign}
        assert repo.find_by_ids([]) == []

    def test_health_check(self, db_manager):
        assert db_manager.health_check()
