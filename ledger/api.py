"""
HTTP API for issuing, revoking, downloading and verifying certificates.
"""

import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import TokenAuthenticator
from .exceptions import LedgerError, ValidationError
from .models import CertificateFilter, CertificateRequest, CertificateStatus
from .service import CertificateService, download_filename

API_PREFIX = "/api/v1"


def envelope(message: str, data: Any = None, status_code: int = 200, success: bool = True,
             **extra) -> JSONResponse:
    """Wraps operator responses as {success, message, data}."""
    content = {"success": success, "message": message}
    if data is not None:
        content["data"] = data
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(content=content, status_code=status_code)


class CertificateAPI:
    """API for working with certificates."""

    def __init__(
            self,
            service: CertificateService,
            authenticator: Optional[TokenAuthenticator] = None,
            lifespan=None
    ):
        self.service = service
        self.authenticator = authenticator or TokenAuthenticator(service.settings)
        self.logger = logging.getLogger(__name__)

        self.app = FastAPI(
            title="Achievement Ledger API",
            description="Penerbitan dan verifikasi Surat Keterangan Prestasi",
            version="1.0.0",
            debug=service.settings.debug,
            lifespan=lifespan
        )

        self._setup_exception_handlers()
        self._setup_routes()

    def _setup_exception_handlers(self):
        """Maps errors to HTTP statuses."""

        @self.app.exception_handler(LedgerError)
        async def ledger_error_handler(request: Request, exc: LedgerError):
            if exc.status_code >= 500:
                self.logger.error(f"{request.method} {request.url.path} failed: {exc}")
            else:
                self.logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
            return envelope(str(exc), status_code=exc.status_code, success=False)

        @self.app.exception_handler(StarletteHTTPException)
        async def http_error_handler(request: Request, exc: StarletteHTTPException):
            return envelope(str(exc.detail), status_code=exc.status_code, success=False)

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            errors = [
                {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
                for error in exc.errors()
            ]
            return envelope("Validasi gagal", status_code=400, success=False, errors=errors)

    def _setup_routes(self):
        """Registers API routes."""
        authenticate = self.authenticator

        @self.app.get(f"{API_PREFIX}/certificates", tags=["certificates"])
        def list_certificates(
                student_id: Optional[str] = None,
                status: Optional[str] = None,
                page: int = 1,
                per_page: int = 10,
                issuer: str = Depends(authenticate)
        ):
            """Paginated certificate list."""
            if status:
                try:
                    status = CertificateStatus(status)
                except ValueError:
                    raise ValidationError(f"status tidak valid: {status}")

            certificate_filter = CertificateFilter(
                student_id=student_id or None,
                status=status or None,
                page=page,
                per_page=per_page,
            )
            items, pagination = self.service.list_certificates(certificate_filter)
            return envelope(
                "Data sertifikat berhasil diambil",
                data=[item.model_dump(mode="json") for item in items],
                pagination=pagination.model_dump(),
            )

        @self.app.get(f"{API_PREFIX}/certificates/{{certificate_id}}", tags=["certificates"])
        def get_certificate(certificate_id: str, issuer: str = Depends(authenticate)):
            """Certificate with student and achievements."""
            detail = self.service.get_certificate(certificate_id)
            return envelope("Data sertifikat berhasil diambil", data=detail.model_dump(mode="json"))

        @self.app.post(f"{API_PREFIX}/certificates", tags=["certificates"], status_code=201)
        def create_certificate(request: CertificateRequest, issuer: str = Depends(authenticate)):
            """Issues a certificate, the PDF is rendered in the background."""
            detail = self.service.create_certificate(request, issued_by=issuer)
            self.logger.info(f"Certificate {detail.certificate_number} issued by {issuer}")
            return envelope(
                "Sertifikat berhasil diterbitkan",
                data=detail.model_dump(mode="json"),
                status_code=201,
            )

        @self.app.post(f"{API_PREFIX}/certificates/{{certificate_id}}/revoke", tags=["certificates"])
        def revoke_certificate(certificate_id: str, issuer: str = Depends(authenticate)):
            """Revokes a certificate."""
            self.service.revoke_certificate(certificate_id)
            self.logger.info(f"Certificate {certificate_id} revoked by {issuer}")
            return envelope("Sertifikat berhasil dicabut")

        @self.app.get(f"{API_PREFIX}/certificates/{{certificate_id}}/download", tags=["certificates"])
        def download_certificate(certificate_id: str, issuer: str = Depends(authenticate)):
            """Certificate PDF as an attachment."""
            pdf_bytes, certificate_number = self.service.download_pdf(certificate_id)
            return Response(
                content=pdf_bytes,
                media_type="application/pdf",
                headers={
                    "Content-Disposition": f'attachment; filename="{download_filename(certificate_number)}"'
                },
            )

        @self.app.get(f"{API_PREFIX}/verify/{{token}}", tags=["public"])
        def verify_certificate(token: str):
            """Public verification of a certificate token."""
            result = self.service.verify_certificate(token)
            return JSONResponse(content=result.to_payload(), status_code=200)
