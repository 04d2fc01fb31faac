"""
Back-office HTTP API

FastAPI application exposing order entry, order reads and CRM follow-up.
Every business route requires an authenticated caller.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, Optional
from uuid import UUID

import uvicorn
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from backoffice import __version__
from backoffice.models.api import (
    CrmSettingsUpdate,
    FollowUpQuery,
    HealthCheckResponse,
    LineContactLink,
    OrderCreateRequest,
    OrderListQuery,
    OrderUpdateRequest,
    PaymentFollowUpQuery,
)
from backoffice.services.contacts import ContactService
from backoffice.services.crm_settings import CrmSettingsService
from backoffice.services.follow_up import FollowUpService
from backoffice.services.identity import AuthResult, IdentityGate
from backoffice.services.orders import OrderService
from backoffice.services.payment_aging import PaymentAgingService
from backoffice.services.pricing import PricingEngine
from backoffice.stores import CrmStore, OrderStore, PostgresCrmStore, PostgresOrderStore
from backoffice.utils.config import Settings, get_settings
from backoffice.utils.database import Database, get_db
from backoffice.utils.errors import AuthenticationError, BackofficeError
from backoffice.utils.logger import configure_logging

logger = logging.getLogger(__name__)


def _first_error_message(errors) -> str:
    """Readable message for the first pydantic error of a request"""
    if not errors:
        return "Invalid request"
    error = errors[0]
    message = str(error.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{location}: {message}" if location else message


def _sort_dir(sort_dir: Optional[str], sort_order: Optional[str]) -> str:
    return (sort_dir or sort_order or "desc").lower()


def _status_filter(value: Optional[str]) -> Optional[str]:
    return None if not value or value == "all" else value


def require_identity(request: Request, authorization: Optional[str] = Header(default=None)) -> AuthResult:
    """Dependency: resolve the caller or fail with 401"""
    gate: IdentityGate = request.app.state.identity_gate
    result = gate.verify(authorization)
    if not result.is_authenticated:
        raise AuthenticationError()
    return result


def _services(request: Request):
    return request.app.state


def create_app(
    settings: Optional[Settings] = None,
    order_store: Optional[OrderStore] = None,
    crm_store: Optional[CrmStore] = None,
    identity_gate: Optional[IdentityGate] = None,
    database: Optional[Database] = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    """
    Build the application.

    Stores and the identity gate default to the PostgreSQL and HTTP
    implementations configured by ``settings``; tests pass their own.
    """
    owns_database = database is None and (order_store is None or crm_store is None)
    if settings is None:
        settings = get_settings()
        if owns_database:
            database = get_db()
    elif owns_database:
        database = Database(settings)
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    order_store = order_store or PostgresOrderStore(database)
    crm_store = crm_store or PostgresCrmStore(database)
    identity_gate = identity_gate or IdentityGate(
        settings.AUTH_URL,
        api_key=settings.AUTH_API_KEY,
        timeout=settings.AUTH_TIMEOUT,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_database:
            database.close()

    app = FastAPI(
        title="Juice Factory Back-Office API",
        description="Order entry, pricing and CRM follow-up",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    crm_settings = CrmSettingsService(crm_store)
    app.state.settings = settings
    app.state.database = database
    app.state.identity_gate = identity_gate
    app.state.orders = OrderService(
        order_store,
        PricingEngine(settings.VAT_MODE, str(settings.VAT_RATE)),
        today=today,
        max_page_limit=settings.MAX_PAGE_LIMIT,
    )
    app.state.crm_settings = crm_settings
    app.state.follow_up = FollowUpService(crm_store, crm_settings, today=today)
    app.state.payment_aging = PaymentAgingService(crm_store, today=today, max_page_limit=settings.MAX_PAGE_LIMIT)
    app.state.contacts = ContactService(crm_store)

    # ========================================================================
    # Error handlers
    # ========================================================================

    @app.exception_handler(BackofficeError)
    async def backoffice_error_handler(request: Request, exc: BackofficeError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _first_error_message(exc.errors())})

    @app.exception_handler(PydanticValidationError)
    async def model_validation_handler(request: Request, exc: PydanticValidationError):
        return JSONResponse(status_code=400, content={"error": _first_error_message(exc.errors())})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # ========================================================================
    # Health
    # ========================================================================

    @app.get("/health", response_model=HealthCheckResponse)
    def health(request: Request):
        db: Optional[Database] = request.app.state.database
        if db is None:
            database_status = "not configured"
        else:
            database_status = "connected" if db.ping() else "disconnected"
        return HealthCheckResponse(
            status="unhealthy" if database_status == "disconnected" else "healthy",
            database=database_status,
            vat_mode=settings.VAT_MODE,
        )

    # ========================================================================
    # Orders
    # ========================================================================

    @app.post("/api/orders")
    def create_order(
        payload: OrderCreateRequest,
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        order = state.orders.create_order(payload, identity.user_id)
        return {"success": True, "order": order, "id": order.id, "order_number": order.order_number}

    @app.get("/api/orders")
    def list_orders(
        customer_id: Optional[UUID] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        order_days_min: Optional[int] = Query(default=None, ge=0),
        order_days_max: Optional[int] = Query(default=None, ge=0),
        sort_by: str = "order_date",
        sort_dir: Optional[str] = None,
        sort_order: Optional[str] = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=settings.DEFAULT_PAGE_LIMIT, ge=1),
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        query = OrderListQuery(
            customer_id=customer_id,
            status=_status_filter(status),
            payment_status=_status_filter(payment_status),
            search=search or None,
            date_from=date_from,
            date_to=date_to,
            order_days_min=order_days_min,
            order_days_max=order_days_max,
            sort_by=sort_by,
            sort_dir=_sort_dir(sort_dir, sort_order),
            page=page,
            limit=limit,
        )
        return state.orders.list_orders(query)

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: UUID, state=Depends(_services), identity: AuthResult = Depends(require_identity)):
        return {"order": state.orders.get_order(order_id)}

    @app.put("/api/orders/{order_id}")
    def update_order(
        order_id: UUID,
        payload: OrderUpdateRequest,
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        order = state.orders.update_order(order_id, payload)
        return {"success": True, "message": "Order updated successfully", "order": order}

    @app.delete("/api/orders/{order_id}")
    def cancel_order(order_id: UUID, state=Depends(_services), identity: AuthResult = Depends(require_identity)):
        state.orders.cancel_order(order_id)
        return {"success": True}

    # ========================================================================
    # CRM
    # ========================================================================

    @app.get("/api/crm/customers")
    def follow_up_customers(
        search: Optional[str] = None,
        has_orders: Optional[bool] = None,
        min_days: Optional[int] = Query(default=None, ge=0),
        max_days: Optional[int] = Query(default=None, ge=0),
        staleness: Optional[str] = None,
        sort_by: str = "days_since_last_order",
        sort_dir: Optional[str] = None,
        sort_order: Optional[str] = None,
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        query = FollowUpQuery(
            search=search or None,
            has_orders=has_orders,
            min_days=min_days,
            max_days=max_days,
            staleness=_status_filter(staleness),
            sort_by=sort_by,
            sort_dir=_sort_dir(sort_dir, sort_order),
        )
        return state.follow_up.list_customers(query)

    @app.get("/api/crm/payment-followup")
    def payment_follow_up(
        search: Optional[str] = None,
        min_days: Optional[int] = Query(default=None, ge=0),
        max_days: Optional[int] = Query(default=None, ge=0),
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sort_by: str = "days_overdue",
        sort_dir: Optional[str] = None,
        sort_order: Optional[str] = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=settings.PAYMENT_FOLLOWUP_PAGE_LIMIT, ge=1),
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        query = PaymentFollowUpQuery(
            search=search or None,
            min_days=min_days,
            max_days=max_days,
            date_from=date_from,
            date_to=date_to,
            sort_by=sort_by,
            sort_dir=_sort_dir(sort_dir, sort_order),
            page=page,
            limit=limit,
        )
        return state.payment_aging.list_customers(query)

    @app.put("/api/crm/line-contacts/{contact_id}")
    def link_line_contact(
        contact_id: UUID,
        payload: LineContactLink,
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        state.contacts.link_customer(contact_id, payload.customer_id)
        return {"success": True}

    # ========================================================================
    # Settings
    # ========================================================================

    @app.get("/api/settings/crm")
    def get_crm_settings(state=Depends(_services), identity: AuthResult = Depends(require_identity)):
        ranges = state.crm_settings.get_day_ranges()
        return {"dayRanges": [day_range.model_dump(by_alias=True) for day_range in ranges]}

    @app.put("/api/settings/crm")
    def update_crm_settings(
        payload: CrmSettingsUpdate,
        state=Depends(_services),
        identity: AuthResult = Depends(require_identity),
    ):
        ranges = state.crm_settings.update_day_ranges(identity.user_id, payload.dayRanges)
        return {"success": True, "dayRanges": [day_range.model_dump(by_alias=True) for day_range in ranges]}

    logger.info(f"Back-office API ready (vat_mode={settings.VAT_MODE}, vat_rate={settings.VAT_RATE})")
    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(app, host=_settings.API_HOST, port=_settings.API_PORT)
