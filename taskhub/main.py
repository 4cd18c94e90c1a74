from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from taskhub.db import filters as _filters  # noqa: F401  (register lifecycle session events)
from taskhub.db.init_db import init_db
from taskhub.errors import register_error_handlers
from taskhub.logging_config import configure_app_logging
from taskhub.routers import admin, catalog, tasks, users
from taskhub.security.matrix import load_permission_matrix
from taskhub.settings import get_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        settings = get_settings()
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        # A malformed matrix stops startup here rather than failing per request.
        app.state.permission_matrix = load_permission_matrix(settings.resolved_permission_matrix_path())
        init_db()
        logger.info("Database initialized (tables ensured + seed if needed)")

        yield

    # Authorization is per route (`authorize(...)` dependencies), not global.
    app = FastAPI(title="taskhub", lifespan=lifespan)
    register_error_handlers(app)

    app.include_router(tasks.router)
    app.include_router(users.router)
    app.include_router(catalog.router)
    app.include_router(admin.router)

    return app


app = create_app()
