# =======================================================================================
# gatewatch/main.py - FastAPI Application Entry Point
# =======================================================================================
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from . import __version__
from .config import config
from .api.dependencies import get_db_manager
from .api.routes.checkins import router as checkins_router
from .api.routes.fraud import router as fraud_router
from .api.routes.gates import router as gates_router
from .api.routes.alerts import router as alerts_router
from .api.routes.dashboard import router as dashboard_router
from .database import DatabaseManager, db_manager
from .models.schemas import HealthResponse
from .workers.sweep_worker import start_sweep_worker, stop_sweep_worker

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG if config.API_DEBUG else config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_manager.create_tables()
    start_sweep_worker()
    logger.info("GateWatch API started successfully")
    yield
    stop_sweep_worker()


def create_app() -> FastAPI:
    app = FastAPI(
        title="GateWatch API",
        version=__version__,
        description="Wristband fraud detection and gate discovery for live events",
        debug=config.API_DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(checkins_router, prefix="/api", tags=["checkins"])
    app.include_router(fraud_router, prefix="/api", tags=["fraud"])
    app.include_router(gates_router, prefix="/api", tags=["gates"])
    app.include_router(alerts_router, prefix="/api", tags=["alerts"])
    app.include_router(dashboard_router, prefix="/api", tags=["dashboard"])

    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    def api_health(db: DatabaseManager = Depends(get_db_manager)):
        try:
            db.fetch_one(text("SELECT 1"))
            return HealthResponse(status="ok", dataAvailable=True, message=None)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return HealthResponse(
                status="error", dataAvailable=False, message=str(e)
            )

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gatewatch.main:app", host=config.API_HOST, port=config.API_PORT, reload=config.API_DEBUG)
