"""
Business logic of the achievement ledger: certificate issuance,
revocation and public verification.
"""

from .service import CertificateService, get_certificate_service
from .models import (
    Certificate, CertificateDetail, CertificateFilter, CertificateRequest, CertificateView, VerifyResult,
)
from .generator import CertificateNumberGenerator, generate_verification_token
from .database import DatabaseManager, get_db_manager
from .storage import ObjectStorage, get_object_storage

__version__ = "1.0.0"

__all__ = [
    'CertificateService',
    'get_certificate_service',
    'Certificate',
    'CertificateDetail',
    'CertificateFilter',
    'CertificateRequest',
    'CertificateView',
    'VerifyResult',
    'CertificateNumberGenerator',
    'generate_verification_token',
    'DatabaseManager',
    'get_db_manager',
    'ObjectStorage',
    'get_object_storage',
]
