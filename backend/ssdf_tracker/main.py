import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ssdf_tracker import database
from ssdf_tracker.config import Settings, get_settings
from ssdf_tracker.errors import register_exception_handlers
from ssdf_tracker.routers.assessments import router as assessments_router
from ssdf_tracker.routers.audit import router as audit_router
from ssdf_tracker.routers.catalog import router as catalog_router
from ssdf_tracker.routers.evidences import router as evidences_router
from ssdf_tracker.routers.cis import router as cis_router
from ssdf_tracker.routers.mappings import router as mappings_router
from ssdf_tracker.routers.organizations import router as organizations_router
from ssdf_tracker.routers.ssdf import router as ssdf_router

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", debug: bool = False) -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_ssdf_tracker", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._ssdf_tracker = True
        root.addHandler(handler)
    root.setLevel(level.upper())
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.DEBUG)
    database.configure_database(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(ssdf_router)
    app.include_router(cis_router)
    app.include_router(mappings_router)
    app.include_router(organizations_router)
    app.include_router(assessments_router)
    app.include_router(evidences_router)
    app.include_router(audit_router)
    app.include_router(catalog_router)

    @app.get("/health")
    async def health():
        """Health check: verifies the API is running and the database is reachable."""
        try:
            await database.check_db_connection()
            db_status = "connected"
        except Exception as exc:
            db_status = f"error: {exc}"

        return {
            "status": "ok" if db_status == "connected" else "degraded",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "database": db_status,
        }

    return app
