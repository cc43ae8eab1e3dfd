from contextlib import asynccontextmanager

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

from workspace_acl.core import config
from workspace_acl.core.database.engine import init_db
from workspace_acl.features.permissions.errors import AccessControlError
from workspace_acl.features.permissions.routes import router as permission_router
from workspace_acl.features.users.dependencies import get_authorization_header
from workspace_acl.utils import get_logger


log = get_logger(__name__)

_ROUTE_PREFIX = "main.workspace_acl.features."


class RouteTimings(TimingClient):
    """Emit per-route latencies to the debug log."""

    def timing(self, metric_name, timing, tags):
        log.debug("route=%s timing=%.4f tags=%s", metric_name.removeprefix(_ROUTE_PREFIX), timing, tags)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    log.info("Creating tables on %s", config.SQLALCHEMY_DATABASE_URL.split("://", 1)[0])
    await init_db()
    yield


def _docs_path(path: str):
    return path if config.ENABLE_DOCS else None


def _validation_errors(exc: RequestValidationError) -> dict:
    """Flatten pydantic errors to {field: message}; body-level errors land on "root"."""
    errors = {}
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        field = error["loc"][-1] if error["loc"] else "root"
        errors["root" if field in ("__root__", "body") else field] = error["msg"]
    return errors


async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = _validation_errors(exc)
    log.info("Rejected request: %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


async def access_control_exception_handler(_request: Request, exc: AccessControlError):
    log.info("Access control error %s: %s", exc.status_code, exc.detail)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


def create_app() -> FastAPI:
    application = FastAPI(
        title="Workspace ACL",
        description="Hierarchical permission engine for workspaces, boards, columns, cells and items",
        version="0.1.0",
        docs_url=_docs_path("/docs"),
        redoc_url=_docs_path("/redoc"),
        openapi_url=_docs_path("/openapi.json"),
        lifespan=lifespan,
    )
    # Callers are throttled per bearer token, not per IP
    application.state.limiter = Limiter(key_func=get_authorization_header)

    application.add_middleware(
        TimingMiddleware, client=RouteTimings(), metric_namer=StarletteScopeToName("main", application)
    )
    if config.ENABLE_DOCS:
        log.warning("Docs enabled")
    if config.ALLOW_ORIGIN:
        log.warning("Allowing cross-origin requests from %s", config.ALLOW_ORIGIN)
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[config.ALLOW_ORIGIN],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(AccessControlError, access_control_exception_handler)
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    application.include_router(permission_router, prefix="/permissions", tags=["permissions"])
    return application


log.info("Initializing server")
app = create_app()


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "Workspace ACL API",
        "version": app.version,
        "status": "online",
        "docs": app.docs_url,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/permissions/*"],
        },
        "features": {
            "permissions": "Workspace > board > column > cell hierarchy with per-item rules",
            "row_security": "Assigned, created, department and custom item filters",
            "visibility": "Role, user and conditional column visibility",
        },
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
