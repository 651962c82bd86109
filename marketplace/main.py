import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from marketplace.auth import TokenVerifier
from marketplace.config import Settings, load_settings
from marketplace.db import OrderStore, ProductCatalog, create_pool, init_schema, ping
from marketplace.errors import (
    Forbidden,
    InvalidRequest,
    InvalidState,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    StorageError,
)
from marketplace.metrics import get_metrics_bytes, get_metrics_content_type
from marketplace.orders import OrderLifecycleManager
from marketplace.routes import orders

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[MarketplaceError], int]] = [
    (NotFound, 404),
    (Forbidden, 403),
    (InvalidTransition, 409),
    (InvalidState, 409),
    (InvalidRequest, 422),
    (StorageError, 503),
]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


async def handle_marketplace_error(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if isinstance(exc, InvalidTransition):
        return JSONResponse(status_code=status_code, content=exc.to_dict())
    if isinstance(exc, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def create_app(
    settings: Settings | None = None,
    *,
    store=None,
    catalog=None,
) -> FastAPI:
    """
    Build the API. With no store/catalog given, a Postgres pool is opened on
    startup and both are backed by it.
    """
    settings = settings or load_settings()
    _configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pool = None
        if store is None or catalog is None:
            pool = await create_pool(settings)
            if settings.init_schema_on_startup:
                await init_schema(pool)
            logger.info("Database pool ready (max_size=%d)", settings.db_pool_max_size)
        app.state.pool = pool
        app.state.order_manager = OrderLifecycleManager(
            store if store is not None else OrderStore(pool),
            catalog if catalog is not None else ProductCatalog(pool),
        )
        yield
        if pool is not None:
            await pool.close()
            logger.info("Database pool closed.")

    app = FastAPI(title="Farm Market Orders", lifespan=lifespan)
    app.state.settings = settings
    app.state.token_verifier = TokenVerifier(settings.jwt_secret, settings.jwt_algorithm)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Authorization"],
    )
    app.add_exception_handler(MarketplaceError, handle_marketplace_error)
    app.include_router(orders.router)

    @app.get("/health")
    @app.get("/api/v1/health")
    async def health(request: Request):
        pool = request.app.state.pool
        if pool is not None and not await ping(pool):
            return JSONResponse(status_code=503, content={"status": "degraded"})
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "marketplace.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
