# backend/main.py
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from config import settings
from database import Store
from utils.error_handlers import register_error_handlers
from utils.services import build_services

# Router imports
from routes.auth import router as auth_router
from routes.admin import router as admin_router
from routes.logs import router as logs_router
from routes.members import router as members_router
from routes.system import router as system_router

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(store: Store = None) -> FastAPI:
    store = store or Store.from_url(settings.DATABASE_URL)
    services = build_services(store, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Initialization
        store.create_schema()
        services.identity.ensure_default_admin(settings.DEFAULT_ADMIN_USERNAME, settings.DEFAULT_ADMIN_EMAIL)
        report = services.engine.check_consistency()
        if not report.passed:
            logger.warning(f"Startup consistency check: {report.status} ({len(report.issues)} issue type(s))")
        yield
        store.dispose()

    app = FastAPI(title="Member Portal API", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    # CORS Configuration
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
        origins.append(settings.FRONTEND_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Router registration
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(logs_router)
    app.include_router(members_router)
    app.include_router(system_router)

    @app.get("/")
    def read_root():
        return {"message": "Member Portal API is running"}

    return app


app = create_app()
