import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from serviceshub import config
from serviceshub.models import Database
from serviceshub.routes import tiles
from serviceshub.services.icon_resolver import IconResolver

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        filename=config.LOG_FILE,
        filemode="a",
        format=config.LOG_FORMAT,
    )


def create_app(
    database: Optional[Database] = None, icon_resolver: Optional[IconResolver] = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A database handed in by the caller stays open; the caller owns it.
        db = database if database is not None else Database(config.DATABASE_URL)
        db.create_tables()
        app.state.database = db
        app.state.icon_resolver = icon_resolver if icon_resolver is not None else IconResolver()
        logger.info(f"Database ready: {db.url}")
        try:
            yield
        finally:
            if database is None:
                db.close()
                logger.info("Database closed")

    app = FastAPI(title="Services Hub", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        issues = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        logger.info(f"Validation failed for {request.method} {request.url.path}: {issues}")
        return JSONResponse(status_code=400, content={"error": "validation_error", "issues": issues})

    # Log requests and responses
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request: {request.method} {request.url}")
        response = await call_next(request)
        logger.info(f"Response: {response.status_code}")
        return response

    @app.get("/")
    async def read_root():
        return {"message": "Welcome to the Services Hub API!"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(tiles.router)
    return app


configure_logging()
app = create_app()
