from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_utils.tasks import repeat_every
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time

from .api import orders, payments, tables, websocket
from .api.order_service import OrderService
from .api.payment_service import PaymentService
from .config import settings
from .database import get_document_store
from .services.khalti import KhaltiService
from .services.redis import redis_client
from .services.stores import OrderStore, TableRegistry, PaymentStore, MenuCatalog, StaffDirectory
from .services.timeout_scheduler import OrderTimeoutScheduler
from .utils.time import utc_now

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def wire_services(app: FastAPI, db, cache=redis_client, khalti=None):
    """Build the repositories and services and hang them on app.state"""
    scheduler = OrderTimeoutScheduler()
    order_service = OrderService(
        orders=OrderStore(db),
        tables=TableRegistry(db),
        menu=MenuCatalog(db),
        staff=StaffDirectory(db),
        scheduler=scheduler,
        notifier=websocket.manager,
        cache=cache,
    )
    app.state.db = db
    app.state.cache = cache
    app.state.scheduler = scheduler
    app.state.orders = order_service
    app.state.staff = order_service.staff
    app.state.notifier = websocket.manager
    app.state.khalti = khalti
    app.state.payments = PaymentService(
        payments=PaymentStore(db),
        order_service=order_service,
        staff=order_service.staff,
        khalti=khalti,
        cache=cache,
    )


def _error_body(message, **extra):
    body = {"success": False, "message": message}
    body.update(extra)
    return body


def create_app() -> FastAPI:
    app = FastAPI(title="Tableside Restaurant API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add response time header"""
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            detail = dict(exc.detail)
            body = _error_body(detail.pop("message", "Request failed"), **detail)
        else:
            body = _error_body(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            errors.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("Validation error", errors=errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("Internal server error"),
        )

    @app.on_event("startup")
    async def startup_event():
        """Wire services, then rebuild order timers before taking traffic"""
        if not hasattr(app.state, "orders"):
            khalti = KhaltiService() if settings.KHALTI_SECRET_KEY else None
            wire_services(app, await get_document_store(), khalti=khalti)

        if app.state.cache.ping():
            logger.info("Redis connected successfully")
        else:
            logger.warning("Redis unavailable; caching disabled until it returns")

        result = await app.state.scheduler.restore_on_startup(app.state.orders.orders)
        logger.info("Order timeouts restored: %s", result)

    if settings.KHALTI_SECRET_KEY:
        @app.on_event("startup")
        @repeat_every(seconds=settings.KHALTI_POLL_SECONDS, logger=logger)
        async def poll_pending_khalti_payments():
            settled = await app.state.payments.poll_pending_khalti()
            if settled:
                logger.info("Khalti poller settled %d payment(s)", settled)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop timers without firing them; restore_on_startup picks them up next boot"""
        app.state.scheduler.shutdown()
        app.state.cache.close()
        logger.info("Scheduler stopped and Redis connection closed")

    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(tables.router)
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        return {"message": "Tableside API is running"}

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "redis": app.state.cache.ping() if hasattr(app.state, "cache") else False,
            "activeTimeouts": len(app.state.scheduler.active_timeouts()) if hasattr(app.state, "scheduler") else 0,
            "timestamp": utc_now().isoformat(),
        }

    return app


app = create_app()
