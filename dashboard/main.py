import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import Settings
from core.exceptions import MarketDataError
from dashboard.routers import health, markets, news, reports, weather
from dashboard.schemas import ErrorResponse
from dashboard.services import MarketServices

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(code=code, message=message, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(MarketDataError)
    async def market_error(request: Request, exc: MarketDataError):
        level = logging.ERROR if exc.http_status >= 500 else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return _error(400, "VALIDATION_ERROR", "Parâmetros inválidos", fields=fields)

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError):
        return _error(400, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        code = "NOT_FOUND" if exc.status_code == 404 else "API_ERROR"
        return _error(exc.status_code, code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error(500, "API_ERROR", "Erro interno do servidor")


def create_app(settings: Optional[Settings] = None, services: Optional[MarketServices] = None) -> FastAPI:
    """
    Build the market API.

    ``services`` may be injected (tests); otherwise they are built from
    ``settings`` (or the environment) when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal services
        if services is None:
            services = MarketServices.build(settings or Settings.from_env())
        app.state.services = services
        await services.start()
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title="Agro Market Data API",
        description="Aggregated commodity quotes, weather, news and AI market reports.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    _install_error_handlers(app)

    app.include_router(health.router)
    app.include_router(news.router)
    app.include_router(markets.router)
    app.include_router(weather.router)
    app.include_router(reports.router)

    @app.get("/")
    def root():
        return {"success": True, "message": "Agro Market Data API is running"}

    return app
