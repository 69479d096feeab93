"""
FastAPI server of the achievement ledger
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings
from ledger.api import API_PREFIX, CertificateAPI
from ledger.database import DatabaseManager, get_db_manager
from ledger.exceptions import StorageError
from ledger.service import CertificateService, get_certificate_service
from ledger.storage import ObjectStorage


def setup_logging(settings: Settings):
    """Configures file and console logging."""
    settings.create_directories()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(settings.log_file),
            logging.StreamHandler()
        ]
    )


def create_app(service: Optional[CertificateService] = None,
               db_manager: Optional[DatabaseManager] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    """Creates the FastAPI application"""
    settings = settings or get_settings()
    setup_logging(settings)

    service = service or get_certificate_service()
    db_manager = db_manager or get_db_manager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle"""
        logging.info("Starting API server...")

        try:
            service.storage.ensure_bucket()
        except StorageError as e:
            logging.error(f"Object storage is not ready: {e}")

        yield

        logging.info("Stopping API server...")
        service.runner.shutdown()
        db_manager.dispose()

    certificate_api = CertificateAPI(service, lifespan=lifespan)
    app = certificate_api.app
    app.state.certificate_api = certificate_api

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get(f"{API_PREFIX}/health", tags=["monitoring"])
    def health_check():
        """API, database and object storage health"""
        health_status = {
            "status": "checking",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "api": {"status": "healthy", "message": "API is running"}
            }
        }

        if db_manager.health_check():
            health_status["components"]["database"] = {
                "status": "healthy",
                "message": "Database connection is active"
            }
        else:
            health_status["components"]["database"] = {
                "status": "unhealthy",
                "message": "Database is unreachable"
            }

        storage: ObjectStorage = service.storage
        if storage.health_check():
            health_status["components"]["object_storage"] = {
                "status": "healthy",
                "message": f"Bucket {storage.bucket} is reachable"
            }
        else:
            health_status["components"]["object_storage"] = {
                "status": "unhealthy",
                "message": f"Bucket {storage.bucket} is unreachable"
            }

        all_healthy = all(
            comp.get("status") == "healthy"
            for comp in health_status["components"].values()
        )
        health_status["status"] = "healthy" if all_healthy else "unhealthy"

        return JSONResponse(content=health_status, status_code=200 if all_healthy else 503)

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api_server:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.app_port,
        reload=settings.app_env == "development",
    )
