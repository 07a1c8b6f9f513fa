import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from catalog.config import Settings, get_settings
from catalog.context import CatalogContext
from catalog.entities import CATEGORY, PRODUCT
from catalog.middleware.correlation import CorrelationFilter, CorrelationMiddleware
from catalog.routes import jobs
from catalog.routes.catalog import build_router
from catalog.routes.deps import limiter
from catalog.utils.logger import logger


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name}...")
        context = CatalogContext(settings)
        await context.connect()
        await context.init_db()
        app.state.context = context

        worker = worker_task = None
        if settings.run_embedded_worker:
            worker = context.create_worker()
            worker_task = asyncio.create_task(worker.run())

        logger.info(f"Backend ready at http://{settings.backend_host}:{settings.backend_port}")
        try:
            yield
        finally:
            if worker is not None:
                worker.stop()
                await worker_task
            await context.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    )
    app.add_middleware(CorrelationMiddleware)

    # Handler-level filter so records from child loggers are stamped too
    for handler in logger.handlers:
        if not any(isinstance(f, CorrelationFilter) for f in handler.filters):
            handler.addFilter(CorrelationFilter())

    @app.get("/health")
    async def health_check(request: Request):
        context: CatalogContext = request.app.state.context
        return {"status": "ok", "redis": await context.redis.is_healthy()}

    app.include_router(build_router(PRODUCT), prefix="/api/products", tags=["Products"])
    app.include_router(build_router(CATEGORY), prefix="/api/categories", tags=["Categories"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "catalog.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug
    )
