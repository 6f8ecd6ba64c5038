import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from grading_service.api import install_error_handlers, router
from grading_service.comparator import ComparisonPolicy
from grading_service.config import Settings, settings
from grading_service.database import Database
from grading_service.grading import GradingService
from grading_service.handlers import GradingHandlers
from grading_service.nats_client import NATSClient
from grading_service.sandbox import build_executors
from prometheus_client import make_asgi_app

logger = logging.getLogger("grading-service")


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(config: Settings = settings) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):

        logger.info(f"Starting {config.service_name}...")

        database = Database(config.database_url)
        database.init()

        service = GradingService(
            session_factory=database.get_session_local(),
            executors=build_executors(config),
            policy=ComparisonPolicy.from_settings(config),
            max_parallel_executions=config.max_parallel_executions,
        )
        app.state.grading_service = service

        nats_client = None
        if config.nats_enabled:
            nats_client = NATSClient(config.nats_url)
            await nats_client.connect()
            for subject, handler in GradingHandlers(service).subscriptions().items():
                await nats_client.subscribe(subject, handler)

        logger.info(f"{config.service_name} ready!")

        yield

        logger.info(f"Shutting down {config.service_name}...")
        if nats_client is not None:
            await nats_client.close()
        database.dispose()

    app = FastAPI(title="Grading Service", lifespan=lifespan)
    app.include_router(router)
    install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": config.service_name
        }

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    return app


configure_logging(settings)
app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
