from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.exceptions import AccessCoreError, ConcurrentUpdateError
from app.features.permissions.routes import router as permission_router
from app.features.hierarchy.routes import router as hierarchy_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing access core")
app = FastAPI(
    title="TAYA Access Core",
    description="Effective permission resolution and management hierarchy for the TAYA ERP",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class RouteTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("access_core.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=RouteTimings(), metric_namer=StarletteScopeToName("access_core", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    # Keyed by dotted field path, e.g. "permissions.tasks.aprove"
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        path = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        errors[".".join(path) or "root"] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AccessCoreError)
async def access_core_exception_handler(request: Request, exc: AccessCoreError):
    if isinstance(exc, ConcurrentUpdateError):
        log.warning("%s %s: %s", request.method, request.url.path, exc.message)
    else:
        log.info("%s: %s", exc.__class__.__name__, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.__class__.__name__, "detail": exc.message},
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    log.info("Creating missing tables")
    await init_db()


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "TAYA Access Core API",
        "version": app.version,
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": "Bearer JWT; the 'sub' claim is the acting user id",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(hierarchy_router, prefix="/hierarchy", tags=["hierarchy"])
