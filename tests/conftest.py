"""
Shared test fixtures
"""
import uuid
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from config.settings import Settings
from ledger.auth import create_access_token
from ledger.database import (
    AchievementCategoryRow, AchievementRepository, AchievementRow, AttachmentRow,
    CertificateRepository, CompetitionLevelRow, DatabaseManager, StudentRepository, StudentRow, UserRow,
)
from ledger.models import (
    AchievementDetail, CertificateDetail, CertificateStatus, Student,
)
from ledger.service import CertificateService
from ledger.storage import ObjectStorage, UploadResult
from ledger.tasks import BackgroundRunner

ISSUED_AT = datetime(2024, 3, 5, 10, 30)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary SQLite database"""
    return Settings(
        database_url_override=f"sqlite:///{tmp_path}/ledger.db",
        app_url="http://testserver/",
        jwt_secret="test-secret",
        school_name="SMA Negeri 1 Contoh",
        school_address="Jl. Pendidikan No. 1, Bandung",
        headmaster_name="Dra. Siti Aminah, M.Pd.",
        headmaster_nip="196805121994032004",
        minio_bucket="skp-test",
        log_file=tmp_path / "logs" / "api.log",
    )


@pytest.fixture
def db_manager(settings):
    """Database with tables and reference data"""
    manager = DatabaseManager(settings.database_url)
    manager.create_tables()
    manager.seed_reference_data()
    yield manager
    manager.dispose()


@pytest.fixture
def seed(db_manager):
    """Operator, two students and their achievements"""
    ids = SimpleNamespace(
        user=uuid.uuid4(),
        student=uuid.uuid4(),
        other_student=uuid.uuid4(),
        olympiad=uuid.uuid4(),
        robotics=uuid.uuid4(),
        debate=uuid.uuid4(),
        foreign=uuid.uuid4(),
    )

    with db_manager.get_session() as session:
        academic = session.query(AchievementCategoryRow).filter_by(name="Akademik").one()
        national = session.query(CompetitionLevelRow).filter_by(name="Nasional").one()
        province = session.query(CompetitionLevelRow).filter_by(name="Provinsi").one()

        session.add(UserRow(id=ids.user, name="Operator Sekolah", email="operator@sekolah.sch.id",
                            password="hash", role="operator"))
        session.add(StudentRow(id=ids.student, nisn="0051234567", full_name="Budi Santoso",
                               birth_place="Bandung", birth_date=date(2007, 8, 17),
                               gender="L", class_name="XII IPA 1", year_entry=2022))
        session.add(StudentRow(id=ids.other_student, nisn="0059876543", full_name="Ani Lestari",
                               class_name="XI IPS 2", year_entry=2023))
        session.flush()

        session.add_all([
            AchievementRow(id=ids.olympiad, student_id=ids.student,
                           competition_name="Olimpiade Sains Nasional Matematika",
                           organizer="Kementerian Pendidikan", category_id=academic.id,
                           rank="Juara 1", level_id=national.id, year=2023,
                           created_at=datetime(2023, 9, 1, 8, 0)),
            AchievementRow(id=ids.robotics, student_id=ids.student,
                           competition_name="Lomba Robotik", organizer="ITB",
                           rank="Juara 2", level_id=province.id, year=2024,
                           created_at=datetime(2024, 1, 10, 8, 0)),
            AchievementRow(id=ids.debate, student_id=ids.student,
                           competition_name="Debat Bahasa Inggris", organizer="Dinas Pendidikan Jawa Barat",
                           category_id=academic.id, rank="Harapan 1", level_id=province.id, year=2024,
                           created_at=datetime(2024, 2, 20, 8, 0)),
            AchievementRow(id=ids.foreign, student_id=ids.other_student,
                           competition_name="Lomba Puisi", organizer="Kecamatan Coblong",
                           rank="Juara 3", year=2024, created_at=datetime(2024, 2, 1, 8, 0)),
        ])
        session.flush()

        session.add(AttachmentRow(achievement_id=ids.olympiad,
                                  file_url="http://localhost:9000/skp-test/achievements/20230901-abcd1234.pdf",
                                  file_name="piagam.pdf", file_type="application/pdf", label="Piagam"))
        session.commit()

    return ids


@pytest.fixture
def certificate_repo(db_manager):
    return CertificateRepository(db_manager)


@pytest.fixture
def mock_storage():
    """Object storage mock"""
    storage = MagicMock(spec=ObjectStorage)
    storage.bucket = "skp-test"
    storage.upload_pdf.side_effect = lambda folder, data, name: UploadResult(
        file_url=f"http://localhost:9000/skp-test/{folder}/{name.replace('/', '-')}-0a1b2c3d.pdf",
        file_name=f"{folder}/{name.replace('/', '-')}-0a1b2c3d.pdf",
        file_size=len(data),
    )
    storage.health_check.return_value = True
    return storage


@pytest.fixture
def runner():
    runner = BackgroundRunner(max_workers=1)
    yield runner
    runner.shutdown()


@pytest.fixture
def service(db_manager, certificate_repo, mock_storage, runner, settings):
    """Certificate service issuing certificates on 5 March 2024"""
    return CertificateService(
        certificate_repo=certificate_repo,
        student_repo=StudentRepository(db_manager),
        achievement_repo=AchievementRepository(db_manager),
        storage=mock_storage,
        runner=runner,
        settings=settings,
        clock=lambda: ISSUED_AT,
    )


@pytest.fixture
def auth_headers(seed, settings):
    token = create_access_token(str(seed.user), settings, email="operator@sekolah.sch.id")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def certificate_detail():
    """Certificate detail built without a database"""
    student_id = uuid.uuid4()
    return CertificateDetail(
        id=uuid.uuid4(),
        student_id=student_id,
        certificate_number="421.2/SKP/2024/0007",
        issued_at=ISSUED_AT,
        valid_until=date(2025, 12, 31),
        qr_token="a" * 32,
        status=CertificateStatus.ACTIVE,
        student_name="Budi Santoso",
        student_nisn="0051234567",
        student=Student(id=student_id, nisn="0051234567", full_name="Budi Santoso",
                        birth_place="Bandung", birth_date=date(2007, 8, 17), class_name="XII IPA 1"),
        achievements=[
            AchievementDetail(id=uuid.uuid4(), student_id=student_id,
                              competition_name="Olimpiade Sains Nasional Bidang Matematika Tingkat SMA",
                              organizer="Pusat Prestasi Nasional Kemendikbudristek",
                              category_name="Akademik", rank="Juara 1", level_name="Nasional", year=2024),
            AchievementDetail(id=uuid.uuid4(), student_id=student_id,
                              competition_name="Lomba Robotik", organizer="ITB",
                              rank="Juara 2", year=2023),
        ],
    )
