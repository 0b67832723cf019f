from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from andar_bahar.api.routes import router as api_router
from andar_bahar.api.routes import runner, scheduler
from andar_bahar.logging_utils import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if scheduler.config.autostart:
        scheduler.start()
    yield
    scheduler.shutdown()
    runner.shutdown()
    logger.info("Scheduler and estimate runner stopped")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Andar Bahar Simulator", version="0.1.0", lifespan=lifespan)

    # Allow local dev frontends to call the API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:5174",
            "http://127.0.0.1:5174",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["system"])
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("andar_bahar.main:app", host="0.0.0.0", port=8000, reload=True)
