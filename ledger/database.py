"""
SQLAlchemy models and repositories of the achievement ledger.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Column, Date, DateTime, ForeignKey, Integer, String, Text, Boolean,
    PrimaryKeyConstraint, UniqueConstraint, Index, Uuid, create_engine, event, func, text
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config.settings import get_settings
from .exceptions import (
    DatabaseError, DuplicateCertificateNumberError, DuplicateVerificationTokenError,
    InvalidReferenceError,
)
from .models import (
    Achievement, AchievementDetail, Attachment, Certificate, CertificateDetail,
    CertificateFilter, CertificateStatus, CertificateView, Student,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class UserRow(Base):
    """School operator (issuer of certificates)."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(Text, nullable=False)
    role = Column(String(50), nullable=False, default="operator")
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)


class StudentRow(Base):
    """Student profile."""

    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    nisn = Column(String(10), unique=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    birth_place = Column(String(100))
    birth_date = Column(Date)
    gender = Column(String(10))
    class_name = Column("class", String(20))
    year_entry = Column(Integer)
    year_graduate = Column(Integer)
    photo_url = Column(Text)
    created_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Student(nisn={self.nisn}, name={self.full_name})>"


class AchievementCategoryRow(Base):
    """Achievement category: academic or non academic."""

    __tablename__ = "achievement_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False)


class CompetitionLevelRow(Base):
    """Competition level, from school up to international."""

    __tablename__ = "competition_levels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    order_rank = Column(Integer, nullable=False, default=0)


class AchievementRow(Base):
    """Competition achievement of a student."""

    __tablename__ = "achievements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    competition_name = Column(String(255), nullable=False)
    organizer = Column(String(255), nullable=False)
    category_id = Column(Integer, ForeignKey("achievement_categories.id"))
    rank = Column(String(50))
    level_id = Column(Integer, ForeignKey("competition_levels.id"))
    year = Column(Integer, nullable=False)
    description = Column(Text)
    created_by = Column(Uuid, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Achievement(name={self.competition_name}, year={self.year})>"


class AttachmentRow(Base):
    """File evidence of an achievement."""

    __tablename__ = "achievement_attachments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    achievement_id = Column(Uuid, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False, index=True)
    file_url = Column(Text, nullable=False)
    file_name = Column(String(255))
    file_type = Column(String(50))
    label = Column(String(100))
    uploaded_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)


class CertificateRow(Base):
    """Issued certificate."""

    __tablename__ = "certificates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    certificate_number = Column(String(100), nullable=False)
    issued_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)
    issued_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    valid_until = Column(Date)
    qr_token = Column(String(255), nullable=False)
    pdf_url = Column(Text)
    status = Column(String(20), nullable=False, default=CertificateStatus.ACTIVE.value,
                    server_default=text("'active'"))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=datetime.now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("certificate_number", name="uq_certificates_certificate_number"),
        UniqueConstraint("qr_token", name="uq_certificates_qr_token"),
        Index("idx_certificates_student", "student_id"),
        Index("idx_certificates_issued_at", "issued_at"),
    )

    def __repr__(self):
        return f"<Certificate(number={self.certificate_number}, status={self.status})>"


class CertificateAchievementRow(Base):
    """Many-to-many link between certificates and achievements."""

    __tablename__ = "certificate_achievements"

    certificate_id = Column(Uuid, ForeignKey("certificates.id", ondelete="CASCADE"), nullable=False)
    achievement_id = Column(Uuid, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("certificate_id", "achievement_id"),
    )


DEFAULT_CATEGORIES = [
    ("Akademik", "academic"),
    ("Non Akademik", "non_academic"),
]

DEFAULT_LEVELS = [
    ("Sekolah", 1),
    ("Kecamatan", 2),
    ("Kabupaten/Kota", 3),
    ("Provinsi", 4),
    ("Nasional", 5),
    ("Internasional", 6),
]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Owns the engine and session factory."""

    def __init__(self, database_url: str = None):
        """
        Initializes the database manager.

        Args:
            database_url: SQLAlchemy connection URL, taken from settings when omitted
        """
        if database_url is None:
            database_url = get_settings().database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            # Background render jobs share the pool with request threads
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=False,
            connect_args=connect_args
        )

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_tables(self):
        """Creates all tables."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_tables(self):
        """Drops all tables."""
        Base.metadata.drop_all(bind=self.engine)
        logger.info("Database tables dropped")

    def seed_reference_data(self):
        """Inserts default categories and competition levels when the tables are empty."""
        with self.get_session() as session:
            if session.query(AchievementCategoryRow).count() == 0:
                session.add_all(
                    AchievementCategoryRow(name=name, type=kind) for name, kind in DEFAULT_CATEGORIES
                )
            if session.query(CompetitionLevelRow).count() == 0:
                session.add_all(
                    CompetitionLevelRow(name=name, order_rank=rank) for name, rank in DEFAULT_LEVELS
                )
            session.commit()

    def get_session(self) -> Session:
        """Returns a new session."""
        return self.SessionLocal()

    def health_check(self) -> bool:
        """Checks the database connection."""
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
                return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def dispose(self):
        self.engine.dispose()


def _certificate_view(row: CertificateRow, student_name=None, student_nisn=None,
                      issued_by_name=None) -> CertificateView:
    view = CertificateView.model_validate(row)
    view.student_name = student_name
    view.student_nisn = student_nisn
    view.issued_by_name = issued_by_name
    return view


class CertificateRepository:
    """Certificate record store."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def _view_query(self, session: Session):
        return (
            session.query(CertificateRow, StudentRow.full_name, StudentRow.nisn, UserRow.name)
            .outerjoin(StudentRow, CertificateRow.student_id == StudentRow.id)
            .outerjoin(UserRow, CertificateRow.issued_by == UserRow.id)
        )

    def count_by_year(self, year: int) -> int:
        """
        Counts certificates issued in the given calendar year.

        Args:
            year: Calendar year

        Returns:
            int: Number of certificates with issued_at inside the year
        """
        try:
            with self.db_manager.get_session() as session:
                return session.query(func.count(CertificateRow.id)).filter(
                    CertificateRow.issued_at >= datetime(year, 1, 1),
                    CertificateRow.issued_at < datetime(year + 1, 1, 1),
                ).scalar() or 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count certificates for {year}: {e}") from e

    def create(self, certificate: Certificate, achievement_ids: Iterable[uuid.UUID]) -> None:
        """
        Stores a certificate and its achievement links in one transaction.

        Args:
            certificate: Certificate to insert
            achievement_ids: Achievements covered by the certificate

        Raises:
            DuplicateCertificateNumberError: The number is already taken
            DuplicateVerificationTokenError: The token is already taken
            InvalidReferenceError: Student, issuer or an achievement does not exist
            DatabaseError: Any other database failure
        """
        try:
            with self.db_manager.get_session() as session, session.begin():
                session.add(CertificateRow(
                    id=certificate.id,
                    student_id=certificate.student_id,
                    certificate_number=certificate.certificate_number,
                    issued_at=certificate.issued_at,
                    issued_by=certificate.issued_by,
                    valid_until=certificate.valid_until,
                    qr_token=certificate.qr_token,
                    status=certificate.status.value,
                    notes=certificate.notes,
                    created_at=certificate.created_at or datetime.now(),
                ))
                session.flush()

                for achievement_id in achievement_ids:
                    session.add(CertificateAchievementRow(
                        certificate_id=certificate.id,
                        achievement_id=achievement_id,
                    ))
                    session.flush()
        except IntegrityError as e:
            raise self._integrity_error(e, certificate) from e
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to store certificate {certificate.certificate_number}: {e}") from e

        logger.info(f"Certificate {certificate.certificate_number} stored")

    @staticmethod
    def _integrity_error(error: IntegrityError, certificate: Certificate) -> Exception:
        message = str(error.orig).lower()
        if "foreign key" in message:
            return InvalidReferenceError(f"Referenced row does not exist: {error.orig}")
        if "certificate_number" in message:
            return DuplicateCertificateNumberError(
                f"Certificate number {certificate.certificate_number} is already taken"
            )
        if "qr_token" in message:
            return DuplicateVerificationTokenError("Verification token is already taken")
        return DatabaseError(f"Integrity error: {error.orig}")

    def find_by_id(self, certificate_id: uuid.UUID) -> Optional[CertificateView]:
        """
        Returns the certificate with the given id or None.
        """
        try:
            with self.db_manager.get_session() as session:
                row = self._view_query(session).filter(CertificateRow.id == certificate_id).first()
                return _certificate_view(*row) if row else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load certificate {certificate_id}: {e}") from e

    def find_by_token(self, token: str) -> Optional[CertificateView]:
        """
        Returns the certificate with the given verification token or None.

        Public lookup: the issuer is not resolved.
        """
        try:
            with self.db_manager.get_session() as session:
                row = (
                    session.query(CertificateRow, StudentRow.full_name, StudentRow.nisn)
                    .outerjoin(StudentRow, CertificateRow.student_id == StudentRow.id)
                    .filter(CertificateRow.qr_token == token)
                    .first()
                )
                return _certificate_view(*row) if row else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to look up verification token: {e}") from e

    def find_detail(self, certificate_id: uuid.UUID) -> Optional[CertificateDetail]:
        """
        Loads a certificate together with its student and achievements.

        Achievements are ordered by year descending, then by creation order.

        Returns:
            Optional[CertificateDetail]: Detail or None when the certificate does not exist
        """
        try:
            with self.db_manager.get_session() as session:
                row = self._view_query(session).filter(CertificateRow.id == certificate_id).first()
                if not row:
                    return None
                view = _certificate_view(*row)

                student = session.get(StudentRow, view.student_id)
                if student is None:
                    raise DatabaseError(f"Student {view.student_id} of certificate {certificate_id} is missing")

                achievement_rows = (
                    session.query(AchievementRow, AchievementCategoryRow.name, CompetitionLevelRow.name)
                    .join(CertificateAchievementRow,
                          CertificateAchievementRow.achievement_id == AchievementRow.id)
                    .outerjoin(AchievementCategoryRow, AchievementRow.category_id == AchievementCategoryRow.id)
                    .outerjoin(CompetitionLevelRow, AchievementRow.level_id == CompetitionLevelRow.id)
                    .filter(CertificateAchievementRow.certificate_id == certificate_id)
                    .order_by(AchievementRow.year.desc(), AchievementRow.created_at.asc())
                    .all()
                )

                attachments = self._attachments_for(session, [a.id for a, _, _ in achievement_rows])

                achievements = []
                for achievement, category_name, level_name in achievement_rows:
                    detail = AchievementDetail.model_validate(achievement)
                    detail.category_name = category_name
                    detail.level_name = level_name
                    detail.attachments = attachments.get(achievement.id, [])
                    achievements.append(detail)

                return CertificateDetail(
                    **view.model_dump(),
                    student=Student.model_validate(student),
                    achievements=achievements,
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load certificate detail {certificate_id}: {e}") from e

    @staticmethod
    def _attachments_for(session: Session, achievement_ids: List[uuid.UUID]) -> Dict[uuid.UUID, List[Attachment]]:
        grouped: Dict[uuid.UUID, List[Attachment]] = defaultdict(list)
        if not achievement_ids:
            return grouped
        rows = (
            session.query(AttachmentRow)
            .filter(AttachmentRow.achievement_id.in_(achievement_ids))
            .order_by(AttachmentRow.uploaded_at.asc())
            .all()
        )
        for row in rows:
            grouped[row.achievement_id].append(Attachment.model_validate(row))
        return grouped

    def find_all(self, certificate_filter: CertificateFilter) -> Tuple[List[CertificateView], int]:
        """
        Lists certificates, newest first.

        Args:
            certificate_filter: Student/status filter and page settings

        Returns:
            Tuple[List[CertificateView], int]: Page of certificates and the total count
        """
        try:
            with self.db_manager.get_session() as session:
                query = self._view_query(session)
                count_query = session.query(func.count(CertificateRow.id))

                if certificate_filter.student_id:
                    student_id = uuid.UUID(certificate_filter.student_id)
                    query = query.filter(CertificateRow.student_id == student_id)
                    count_query = count_query.filter(CertificateRow.student_id == student_id)

                if certificate_filter.status:
                    query = query.filter(CertificateRow.status == certificate_filter.status.value)
                    count_query = count_query.filter(CertificateRow.status == certificate_filter.status.value)

                total = count_query.scalar() or 0
                offset = (certificate_filter.page - 1) * certificate_filter.per_page
                rows = (
                    query.order_by(CertificateRow.issued_at.desc())
                    .limit(certificate_filter.per_page)
                    .offset(offset)
                    .all()
                )
                return [_certificate_view(*row) for row in rows], total
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to list certificates: {e}") from e

    def update_pdf_url(self, certificate_id: uuid.UUID, pdf_url: str) -> bool:
        """
        Stores the URL of the rendered PDF.

        Returns:
            bool: True if the certificate exists
        """
        try:
            with self.db_manager.get_session() as session:
                updated = session.query(CertificateRow).filter(
                    CertificateRow.id == certificate_id
                ).update({CertificateRow.pdf_url: pdf_url}, synchronize_session=False)
                session.commit()
                return updated > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update PDF URL of {certificate_id}: {e}") from e

    def revoke(self, certificate_id: uuid.UUID) -> bool:
        """
        Sets the status of an active certificate to revoked.

        The status check is part of the UPDATE, so of two concurrent calls
        only one changes the row.

        Returns:
            bool: True if an active certificate was revoked
        """
        try:
            with self.db_manager.get_session() as session:
                updated = session.query(CertificateRow).filter(
                    CertificateRow.id == certificate_id,
                    CertificateRow.status == CertificateStatus.ACTIVE.value,
                ).update({
                    CertificateRow.status: CertificateStatus.REVOKED.value,
                    CertificateRow.updated_at: datetime.now(),
                }, synchronize_session=False)
                session.commit()
                return updated > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to revoke certificate {certificate_id}: {e}") from e


class StudentRepository:
    """Read access to students."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def find_by_id(self, student_id: uuid.UUID) -> Optional[Student]:
        try:
            with self.db_manager.get_session() as session:
                row = session.get(StudentRow, student_id)
                return Student.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load student {student_id}: {e}") from e


class AchievementRepository:
    """Read access to achievements."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def find_by_ids(self, achievement_ids: List[uuid.UUID]) -> List[Achievement]:
        """Returns the achievements that exist among the given ids."""
        if not achievement_ids:
            return []
        try:
            with self.db_manager.get_session() as session:
                rows = session.query(AchievementRow).filter(AchievementRow.id.in_(achievement_ids)).all()
                return [Achievement.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load achievements: {e}") from e


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Returns the process wide database manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager
