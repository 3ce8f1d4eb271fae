"""FastAPI server for the marketing site: form endpoints, brochure, health and static frontend."""

import secrets
import time
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config.production_settings import ProductionSettings, settings as default_settings
from ..core.exceptions import (
    BrochureNotFoundError, FormValidationError, MarketingSiteError
)
from ..core.models.common import SystemHealth
from ..infrastructure.database.service import ProductionDatabaseService
from ..infrastructure.email.service import ProductionEmailService
from ..infrastructure.email.templates import EmailTemplateManager
from ..infrastructure.logging.service import ProductionLoggingService
from ..services.form_intake import FormIntakeService, IntakeResult
from .rate_limit import SlidingWindowRateLimiter
from .responses import FormResponse, HealthResponse, error_response, request_id_of
from .static_server import setup_static_files


STRICT_FAILURE_MESSAGE = "Failed to send, please retry later."
RATE_LIMIT_MESSAGE = "Too many requests, please try again later."

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def client_ip(request: Request, trust_proxy: bool = False) -> Optional[str]:
    """Client address; X-Forwarded-For is only read behind a trusted proxy."""
    forwarded = request.headers.get("x-forwarded-for") if trust_proxy else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def read_form_payload(request: Request, form_type: str) -> Dict[str, Any]:
    """Accept the form as JSON or as a urlencoded/multipart body."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            form = await request.form()
            return {key: value for key, value in form.items() if isinstance(value, str)}
        payload = await request.json()
    except ValueError as e:
        raise FormValidationError(form_type, [{"field": "body", "message": "Request body is not valid JSON"}]) from e

    if not isinstance(payload, dict):
        raise FormValidationError(form_type, [{"field": "body", "message": "Request body must be an object"}])
    return payload


def create_app(
    app_settings: Optional[ProductionSettings] = None,
    email_service: Optional[ProductionEmailService] = None
) -> FastAPI:
    """Build the application. ``email_service`` replaces the configured one when given."""
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logging_service = ProductionLoggingService(
            log_dir=app_settings.logging.log_dir,
            log_level=app_settings.logging.level,
            max_file_size=app_settings.logging.max_file_size,
            backup_count=app_settings.logging.backup_count
        )
        app.state.logging_service = logging_service
        app.state.started_at = time.monotonic()

        logging_service.log_application_event(
            "Application startup initiated",
            component="server",
            operation="startup",
            environment=app_settings.system.environment
        )

        try:
            # Submission store is optional; the site works without it
            db_service = None
            if app_settings.database.enabled:
                db_service = ProductionDatabaseService(
                    app_settings.database.path,
                    logging_service=logging_service,
                    connection_timeout=app_settings.database.connection_timeout
                )
                try:
                    await db_service.initialize()
                except MarketingSiteError as e:
                    logging_service.log_error(e, component="server", operation="database_startup")
                    db_service = None
            app.state.db_service = db_service

            service = email_service or ProductionEmailService.from_config(
                app_settings.email,
                production=app_settings.system.is_production,
                record_sink=db_service.save_email_record if db_service else None,
                logging_service=logging_service
            )
            app.state.email_service = service

            app.state.intake_service = FormIntakeService(
                email_service=service,
                template_manager=EmailTemplateManager(
                    company_name=app_settings.email.company_name,
                    client_url=app_settings.email.client_url,
                    templates_dir=app_settings.email.templates_dir
                ),
                email_config=app_settings.email,
                db_service=db_service,
                logging_service=logging_service
            )

            validation = app_settings.get_validation_summary()
            if not validation["is_valid"]:
                logging_service.log_application_event(
                    f"Configuration has {validation['total_errors']} problem(s)",
                    level="WARNING",
                    component="server",
                    operation="startup",
                    errors=validation["errors_by_section"]
                )

            logging_service.log_application_event(
                "Application startup completed successfully",
                component="server",
                operation="startup",
                transports=service.registry.names()
            )
        except Exception as e:
            logging_service.log_error(e, component="server", operation="startup")
            raise

        yield

        logging_service.log_application_event(
            "Application shutdown initiated",
            component="server",
            operation="shutdown"
        )
        try:
            await app.state.email_service.close()
        except Exception as e:
            logging_service.log_error(e, component="server", operation="shutdown")

        logging_service.log_application_event(
            "Application shutdown completed",
            component="server",
            operation="shutdown"
        )
        logging_service.close()

    debug = app_settings.system.debug
    app = FastAPI(
        title="Marketing Site API",
        description="Marketing website backend with form intake and resilient email delivery",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if debug else None,
        redoc_url="/redoc" if debug else None
    )
    app.state.settings = app_settings
    app.state.rate_limiter = SlidingWindowRateLimiter(
        limit=app_settings.security.api_rate_limit,
        window_seconds=app_settings.security.rate_limit_window_seconds
    )

    if app_settings.security.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.security.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # Middleware for request logging and timing
    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log all requests with timing and error handling."""
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or request_id_of(request)
        request.state.request_id = request_id
        logging_service = getattr(request.app.state, "logging_service", None)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if logging_service:
                logging_service.log_error(
                    e,
                    component="api",
                    operation=f"{request.method} {request.url.path}",
                    context={"request_id": request_id, "duration_ms": duration_ms}
                )
            response = error_response(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                str(e) if debug else "Internal server error",
                "INTERNAL_ERROR"
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        if logging_service and app_settings.logging.log_api_requests:
            logging_service.log_api_request(
                method=request.method,
                path=str(request.url.path),
                status_code=response.status_code,
                duration_ms=duration_ms,
                user_agent=request.headers.get("user-agent"),
                ip_address=client_ip(request, app_settings.security.trust_proxy),
                request_id=request_id
            )

        response.headers["X-Request-ID"] = request_id
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    # Exception handlers
    @app.exception_handler(FormValidationError)
    async def form_validation_exception_handler(request: Request, exc: FormValidationError):
        """Field-level validation errors in the shape the site's forms expect."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Validation error",
                "errors": exc.errors,
                "requestId": request_id_of(request)
            }
        )

    @app.exception_handler(MarketingSiteError)
    async def marketing_site_exception_handler(request: Request, exc: MarketingSiteError):
        """Handle custom application exceptions."""
        logging_service = getattr(request.app.state, "logging_service", None)
        if logging_service:
            logging_service.log_error(
                exc,
                component="api",
                operation=f"{request.method} {request.url.path}",
                context={"request_id": request_id_of(request)}
            )

        if isinstance(exc, BrochureNotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        else:
            status_code = status.HTTP_400_BAD_REQUEST

        return error_response(
            request,
            status_code,
            exc.message,
            exc.error_code,
            details=exc.context if debug else None
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request parameter validation errors."""
        return error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "Validation error",
            "VALIDATION_ERROR",
            details={"validation_errors": exc.errors()}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler_override(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with consistent format."""
        return error_response(
            request,
            exc.status_code,
            str(exc.detail),
            "HTTP_ERROR",
            headers=getattr(exc, "headers", None)
        )

    def check_rate_limit(request: Request) -> Optional[JSONResponse]:
        key = client_ip(request, app_settings.security.trust_proxy) or "unknown"
        retry_after = request.app.state.rate_limiter.hit(key)
        if retry_after is None:
            return None
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"success": False, "message": RATE_LIMIT_MESSAGE, "requestId": request_id_of(request)},
            headers={"Retry-After": str(max(int(retry_after), 1))}
        )

    def form_reply(request: Request, result: IntakeResult) -> JSONResponse:
        request_id = request_id_of(request)
        if app_settings.email.strict_delivery and not result.email_sent:
            return JSONResponse(
                status_code=status.HTTP_502_BAD_GATEWAY,
                content=FormResponse(success=False, message=STRICT_FAILURE_MESSAGE, requestId=request_id).model_dump()
            )
        return JSONResponse(
            content=FormResponse(success=True, message=result.response_message, requestId=request_id).model_dump()
        )

    # API endpoints
    @app.get("/api")
    async def api_index():
        """List the public endpoints."""
        return {
            "message": "API is running",
            "version": __version__,
            "endpoints": {
                "health": "/api/health",
                "contact": "/api/contact",
                "sendEmail": "/api/send-email",
                "brochure": "/api/contact/brochure",
                "download": "/api/brochure/download",
                "emailRecords": "/api/email/records"
            }
        }

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request, verify: bool = False):
        """Health of the database, email delivery and configuration.

        ``?verify=true`` also connects and authenticates to the first usable
        transport profile.
        """
        state = request.app.state
        health = SystemHealth()

        db_service = getattr(state, "db_service", None)
        if not app_settings.database.enabled:
            health.add_check("database", "disabled", "Submission store disabled")
        elif db_service is None:
            health.add_check("database", "unhealthy", "Database service not initialized")
        else:
            try:
                stats = await db_service.get_database_stats()
                health.add_check("database", "healthy", "Database connection successful", stats)
            except MarketingSiteError as e:
                health.add_check("database", "unhealthy", e.message)

        service = getattr(state, "email_service", None)
        if service is None or len(service.registry) == 0:
            health.add_check("email", "unhealthy", "No transport profiles configured")
        else:
            records = service.recent_records()
            health.add_check(
                "email",
                "healthy",
                f"{len(service.registry)} transport profile(s) configured",
                {
                    "transports": service.registry.names(),
                    "records": len(records),
                    "last_status": records[-1].status.value if records else None
                }
            )
            if verify:
                result = await service.verify()
                if result.success:
                    health.add_check("smtp", "healthy", "Transport verified", result.data)
                else:
                    health.add_check("smtp", "unhealthy", result.error, result.metadata)

        logging_service = getattr(state, "logging_service", None)
        if logging_service is not None:
            log_stats = logging_service.get_log_statistics()
            health.add_check(
                "logging",
                "healthy",
                f"Logging at {log_stats['log_level']}",
                log_stats if debug else {"log_files": len(log_stats["log_files"])}
            )

        validation = app_settings.get_validation_summary()
        if validation["is_valid"]:
            health.add_check("configuration", "healthy", "Configuration valid")
        else:
            health.add_check(
                "configuration",
                "unhealthy",
                f"{validation['total_errors']} configuration errors",
                {"errors": validation["errors_by_section"]} if debug else {}
            )

        started_at = getattr(state, "started_at", None)
        return HealthResponse(
            status=health.status,
            timestamp=health.last_check.isoformat(),
            version=__version__,
            environment=app_settings.system.environment,
            uptime_seconds=round(time.monotonic() - started_at, 3) if started_at else 0.0,
            checks={name: check.model_dump() for name, check in health.checks.items()}
        )

    @app.post("/api/contact")
    @app.post("/api/send-email")
    async def submit_contact(request: Request):
        """Contact form submission."""
        limited = check_rate_limit(request)
        if limited:
            return limited

        payload = await read_form_payload(request, "contact")
        result = await request.app.state.intake_service.submit_contact(
            payload,
            ip_address=client_ip(request, app_settings.security.trust_proxy),
            user_agent=request.headers.get("user-agent"),
            request_id=request_id_of(request)
        )
        return form_reply(request, result)

    @app.post("/api/contact/brochure")
    @app.post("/api/brochure")
    async def submit_brochure(request: Request):
        """Brochure request submission."""
        limited = check_rate_limit(request)
        if limited:
            return limited

        payload = await read_form_payload(request, "brochure")
        result = await request.app.state.intake_service.submit_brochure(
            payload,
            ip_address=client_ip(request, app_settings.security.trust_proxy),
            user_agent=request.headers.get("user-agent"),
            request_id=request_id_of(request)
        )
        return form_reply(request, result)

    @app.get("/api/brochure/download")
    async def download_brochure():
        """Serve the brochure PDF as an attachment."""
        brochure_path = app_settings.email.brochure_path
        if not brochure_path.is_file():
            raise BrochureNotFoundError(str(brochure_path))

        return FileResponse(
            brochure_path,
            media_type="application/pdf",
            filename=app_settings.email.brochure_filename,
            headers={"Cache-Control": "public, max-age=86400"}
        )

    @app.get("/api/email/records")
    async def email_records(request: Request):
        """Recent delivery runs, oldest first."""
        admin_token = app_settings.security.admin_token
        if admin_token:
            supplied = request.headers.get("X-Admin-Token", "")
            if not secrets.compare_digest(supplied.encode(), admin_token.encode()):
                return error_response(request, status.HTTP_401_UNAUTHORIZED, "Unauthorized", "UNAUTHORIZED")

        service = request.app.state.email_service
        records = service.recent_records()
        return {
            "success": True,
            "count": len(records),
            "limit": service.record_store.limit,
            "records": [record.model_dump(mode="json") for record in records]
        }

    # Static frontend and SPA fallback go last
    setup_static_files(app, app_settings.system.static_dirs, company_name=app_settings.email.company_name)

    return app


# Application instance for uvicorn
app = create_app()
