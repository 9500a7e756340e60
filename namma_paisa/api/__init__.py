"""
Namma Paisa Loans API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config import get_config
from ..errors import PaisaError
from ..logging_config import get_logger, setup_logging

from .loans import router as loans_router
from .snapshots import router as snapshots_router
from .calculator import router as calculator_router
from .audit import router as audit_router


logger = get_logger("namma_paisa.api")


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation error"
    first = errors[0]
    message = first.get("msg", "Validation error")
    # pydantic prefixes messages raised from ValueError
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    if location:
        return f"{'.'.join(location)}: {message}"
    return message


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the API as {"error": message}"""

    @app.exception_handler(PaisaError)
    async def paisa_error_handler(request: Request, exc: PaisaError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _first_validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Namma Paisa Loans API",
        description="Loan tracking with EMI schedules, payments and early closure",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(snapshots_router, prefix="/monthly-snapshot", tags=["Monthly Snapshot"])
    app.include_router(calculator_router, prefix="/calculator", tags=["Calculator"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "namma_paisa_loans",
            "version": __version__
        }

    return app


app = create_app()
