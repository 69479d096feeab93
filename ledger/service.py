"""
Certificate workflow: issuance, revocation, public verification and download.
"""

import logging
import math
import uuid
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from config.settings import Settings, get_settings
from .database import (
    AchievementRepository, CertificateRepository, StudentRepository, get_db_manager,
)
from .exceptions import (
    AchievementNotFoundError, CertificateAlreadyRevokedError, CertificateNotFoundError,
    ConflictError, StorageError, StudentNotFoundError, ValidationError,
)
from .generator import CertificateNumberGenerator, generate_verification_token
from .models import (
    AchievementView, Certificate, CertificateDetail, CertificateFilter, CertificateRequest,
    CertificateStatus, CertificateView, Pagination, VerifyResult,
)
from .renderer import CertificateRenderer, render_certificate
from .storage import ObjectStorage, get_object_storage
from .tasks import BackgroundRunner

logger = logging.getLogger(__name__)

PDF_FOLDER = "certificates"

MESSAGE_NOT_FOUND = "Sertifikat tidak ditemukan. Dokumen ini mungkin tidak sah."
MESSAGE_REVOKED = "Sertifikat ini telah dicabut dan tidak berlaku."
MESSAGE_VALID = "Sertifikat valid dan sah dikeluarkan oleh sekolah."


def parse_uuid(value: str, message: str = "ID tidak valid") -> uuid.UUID:
    """
    Parses a UUID string.

    Raises:
        ValidationError: If the value is not a UUID
    """
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError):
        raise ValidationError(message)


def parse_valid_until(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("format valid_until tidak valid, gunakan YYYY-MM-DD")


class CertificateService:
    """Service for working with certificates."""

    def __init__(self,
                 certificate_repo: CertificateRepository,
                 student_repo: StudentRepository,
                 achievement_repo: AchievementRepository,
                 storage: ObjectStorage,
                 runner: BackgroundRunner,
                 settings: Optional[Settings] = None,
                 renderer: Optional[CertificateRenderer] = None,
                 number_generator: Optional[CertificateNumberGenerator] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initializes the service.

        Args:
            certificate_repo: Certificate record store
            student_repo: Student lookups
            achievement_repo: Achievement lookups
            storage: Object storage for rendered PDFs
            runner: Runner for background rendering
            settings: Application settings
            renderer: PDF renderer
            number_generator: Certificate number formatter
            clock: Source of the issuance timestamp
        """
        self.settings = settings or get_settings()
        self.certificate_repo = certificate_repo
        self.student_repo = student_repo
        self.achievement_repo = achievement_repo
        self.storage = storage
        self.runner = runner
        self.renderer = renderer or CertificateRenderer()
        self.number_generator = number_generator or CertificateNumberGenerator(
            self.settings.certificate_office_code
        )
        self.clock = clock

    def list_certificates(self, certificate_filter: CertificateFilter) -> Tuple[List[CertificateView], Pagination]:
        """
        Lists certificates page by page.

        Returns:
            Tuple[List[CertificateView], Pagination]: Page of certificates and pagination metadata
        """
        if certificate_filter.student_id:
            parse_uuid(certificate_filter.student_id, "student_id tidak valid")

        items, total = self.certificate_repo.find_all(certificate_filter)
        total_pages = math.ceil(total / certificate_filter.per_page) if total else 0
        pagination = Pagination(
            page=certificate_filter.page,
            per_page=certificate_filter.per_page,
            total_items=total,
            total_pages=total_pages,
        )
        return items, pagination

    def get_certificate(self, certificate_id: str) -> CertificateDetail:
        """
        Returns the certificate with student and achievements.

        Raises:
            ValidationError: Malformed id
            CertificateNotFoundError: Unknown certificate
        """
        uid = parse_uuid(certificate_id)
        detail = self.certificate_repo.find_detail(uid)
        if detail is None:
            raise CertificateNotFoundError("sertifikat tidak ditemukan")
        return detail

    def create_certificate(self, request: CertificateRequest, issued_by: Optional[str] = None) -> CertificateDetail:
        """
        Issues a certificate.

        The number is the count of certificates issued this year plus one.
        When a concurrent issuance takes the same number (or the token
        collides) the issuance is retried once with a fresh count and token.
        The PDF is rendered and uploaded in the background.

        Args:
            request: Student, achievements and optional expiry date
            issued_by: Id of the issuing operator

        Returns:
            CertificateDetail: The stored certificate

        Raises:
            ValidationError: Malformed input or achievements of another student
            StudentNotFoundError: Unknown student
            AchievementNotFoundError: Unknown achievement
            ConflictError: Number still taken after the retry
        """
        student_id = parse_uuid(request.student_id, "student_id tidak valid")

        if not request.achievement_ids:
            raise ValidationError("minimal 1 prestasi harus dipilih")

        achievement_ids: List[uuid.UUID] = []
        for raw_id in request.achievement_ids:
            achievement_id = parse_uuid(raw_id, f"achievement_id tidak valid: {raw_id}")
            if achievement_id not in achievement_ids:
                achievement_ids.append(achievement_id)

        valid_until = parse_valid_until(request.valid_until)

        issuer_id = None
        if issued_by:
            try:
                issuer_id = uuid.UUID(str(issued_by))
            except ValueError:
                logger.warning(f"Issuer id {issued_by} is not a UUID, certificate stored without issuer")

        if self.student_repo.find_by_id(student_id) is None:
            raise StudentNotFoundError("siswa tidak ditemukan")

        found = {a.id: a for a in self.achievement_repo.find_by_ids(achievement_ids)}
        for achievement_id in achievement_ids:
            achievement = found.get(achievement_id)
            if achievement is None:
                raise AchievementNotFoundError(f"prestasi tidak ditemukan: {achievement_id}")
            if achievement.student_id != student_id:
                raise ValidationError(f"prestasi {achievement_id} bukan milik siswa ini")

        certificate = self._store(student_id, achievement_ids, issuer_id, valid_until, request.notes)

        detail = self.certificate_repo.find_detail(certificate.id)
        if detail is None:
            raise CertificateNotFoundError("sertifikat tidak ditemukan")

        self.runner.submit(f"render {detail.certificate_number}", self._render_and_upload, detail)

        logger.info(f"Certificate {detail.certificate_number} issued for student {student_id}")
        return detail

    def _store(self, student_id: uuid.UUID, achievement_ids: List[uuid.UUID],
               issuer_id: Optional[uuid.UUID], valid_until: Optional[date], notes: str) -> Certificate:
        attempts = 2
        for attempt in range(1, attempts + 1):
            issued_at = self.clock()
            count = self.certificate_repo.count_by_year(issued_at.year)
            certificate = Certificate(
                id=uuid.uuid4(),
                student_id=student_id,
                certificate_number=self.number_generator.generate(count + 1, issued_at.year),
                issued_at=issued_at,
                issued_by=issuer_id,
                valid_until=valid_until,
                qr_token=generate_verification_token(),
                status=CertificateStatus.ACTIVE,
                notes=notes,
                created_at=issued_at,
            )
            try:
                self.certificate_repo.create(certificate, achievement_ids)
                return certificate
            except ConflictError as e:
                if not e.retryable or attempt == attempts:
                    raise
                logger.warning(f"Issuance of {certificate.certificate_number} collided, retrying: {e}")

    def _render_and_upload(self, detail: CertificateDetail) -> str:
        pdf_bytes = self._build_pdf(detail)
        result = self.storage.upload_pdf(PDF_FOLDER, pdf_bytes, detail.certificate_number)
        self.certificate_repo.update_pdf_url(detail.id, result.file_url)
        logger.info(f"PDF of {detail.certificate_number} stored at {result.file_url}")
        return result.file_url

    def _build_pdf(self, detail: CertificateDetail) -> bytes:
        return render_certificate(detail, self.settings, self.renderer)

    def revoke_certificate(self, certificate_id: str):
        """
        Revokes an active certificate.

        Raises:
            ValidationError: Malformed id
            CertificateNotFoundError: Unknown certificate
            CertificateAlreadyRevokedError: Certificate was revoked earlier
        """
        uid = parse_uuid(certificate_id)
        certificate = self.certificate_repo.find_by_id(uid)
        if certificate is None:
            raise CertificateNotFoundError("sertifikat tidak ditemukan")
        if certificate.is_revoked:
            raise CertificateAlreadyRevokedError("sertifikat sudah dicabut sebelumnya")

        if not self.certificate_repo.revoke(uid):
            # revoked or deleted since the read above
            if self.certificate_repo.find_by_id(uid) is None:
                raise CertificateNotFoundError("sertifikat tidak ditemukan")
            raise CertificateAlreadyRevokedError("sertifikat sudah dicabut sebelumnya")
        logger.info(f"Certificate {certificate.certificate_number} revoked")

    def verify_certificate(self, token: str) -> VerifyResult:
        """
        Checks a verification token.

        Returns:
            VerifyResult: Not found, revoked (certificate only) or valid
            (certificate, student and achievements)
        """
        certificate = self.certificate_repo.find_by_token(token.strip()) if token else None
        if certificate is None:
            logger.info("Verification of an unknown token")
            return VerifyResult(is_valid=False, message=MESSAGE_NOT_FOUND)

        if certificate.is_revoked:
            logger.info(f"Verification of revoked certificate {certificate.certificate_number}")
            return VerifyResult(is_valid=False, certificate=certificate, message=MESSAGE_REVOKED)

        detail = self.certificate_repo.find_detail(certificate.id)
        if detail is None:
            return VerifyResult(is_valid=False, message=MESSAGE_NOT_FOUND)

        achievements = [
            AchievementView(**a.model_dump(exclude={"attachments"})) for a in detail.achievements
        ]
        return VerifyResult(
            is_valid=True,
            certificate=certificate,
            student=detail.student,
            achievements=achievements,
            message=MESSAGE_VALID,
        )

    def download_pdf(self, certificate_id: str) -> Tuple[bytes, str]:
        """
        Returns the certificate PDF.

        The PDF is rendered on demand. With PDF_DOWNLOAD_PREFER_STORED the
        uploaded copy is served when it exists and can be fetched.

        Returns:
            Tuple[bytes, str]: PDF document and certificate number

        Raises:
            CertificateNotFoundError: Unknown certificate
            RenderError: The PDF could not be rendered
        """
        detail = self.get_certificate(certificate_id)

        if self.settings.pdf_download_prefer_stored and detail.pdf_url:
            try:
                return self.storage.download(detail.pdf_url), detail.certificate_number
            except (StorageError, ValidationError) as e:
                logger.warning(f"Stored PDF of {detail.certificate_number} unavailable, rendering: {e}")

        return self._build_pdf(detail), detail.certificate_number


def download_filename(certificate_number: str) -> str:
    """Returns the attachment file name of a certificate PDF."""
    return f"SKP-{certificate_number.replace('/', '-')}.pdf"


_certificate_service: Optional[CertificateService] = None
_runner: Optional[BackgroundRunner] = None


def get_background_runner() -> BackgroundRunner:
    """Returns the process wide background runner."""
    global _runner
    if _runner is None:
        _runner = BackgroundRunner(max_workers=get_settings().render_workers)
    return _runner


def get_certificate_service() -> CertificateService:
    """Returns the process wide certificate service."""
    global _certificate_service
    if _certificate_service is None:
        db_manager = get_db_manager()
        _certificate_service = CertificateService(
            certificate_repo=CertificateRepository(db_manager),
            student_repo=StudentRepository(db_manager),
            achievement_repo=AchievementRepository(db_manager),
            storage=get_object_storage(),
            runner=get_background_runner(),
        )
    return _certificate_service
