"""
Server entry point: FastAPI app setup and route configuration.
Sets up the FastAPI server with CORS, error handlers and the scan API.
"""

from __future__ import annotations

import contextlib
import dataclasses
import uuid
from collections.abc import AsyncGenerator

import dotenv
import fastapi
import uvicorn
from fastapi import exceptions as fastapi_exceptions
from fastapi.middleware import cors
from starlette import responses

from cookie_scanner import config
from cookie_scanner.categorization import categories as categories_mod
from cookie_scanner.categorization import client as categorization_client
from cookie_scanner.models import categorization, scan
from cookie_scanner.pipeline import orchestrator as orchestrator_mod
from cookie_scanner.storage import repository as repository_mod
from cookie_scanner.utils import errors, logger, metrics

dotenv.load_dotenv()

log = logger.create_logger("Server")


@dataclasses.dataclass
class Services:
    """Long-lived collaborators shared by every request."""

    orchestrator: orchestrator_mod.ScanOrchestrator
    categorizer: categorization_client.CategorizationClient
    server_settings: config.ServerSettings

    @property
    def categories(self) -> categories_mod.CategoryRegistry:
        return self.categorizer.categories


def build_services(
    server_settings: config.ServerSettings | None = None,
    categorization_settings: config.CategorizationSettings | None = None,
    browser_settings: config.BrowserSettings | None = None,
) -> Services:
    """Wire the repository, categorization client and orchestrator from settings."""
    server_settings = server_settings or config.ServerSettings()
    categorizer = categorization_client.CategorizationClient(
        categorization_settings or config.CategorizationSettings()
    )
    orchestrator = orchestrator_mod.ScanOrchestrator(
        repository_mod.create_repository(server_settings.storage_dir),
        categorizer,
        browser_settings or config.BrowserSettings(),
        categories=categorizer.categories,
    )
    return Services(orchestrator=orchestrator, categorizer=categorizer, server_settings=server_settings)


def _require_uuid(transaction_id: str) -> str:
    try:
        uuid.UUID(transaction_id)
    except ValueError as exc:
        raise errors.UrlValidationError(
            f"Malformed transaction id {transaction_id[:80]!r}", "Transaction id must be a valid UUID"
        ) from exc
    return transaction_id


def _services(request: fastapi.Request) -> Services:
    return request.app.state.services  # type: ignore[no-any-return]


def create_app(services: Services | None = None) -> fastapi.FastAPI:
    """Create the FastAPI application around *services*."""
    services = services or build_services()

    @contextlib.asynccontextmanager
    async def lifespan(_app: fastapi.FastAPI) -> AsyncGenerator[None]:
        """Log start-up configuration and release shared resources on shutdown."""
        log.section("Cookie Scanner Server Started")
        log.info("Environment", {"env": services.server_settings.environment})
        config_error = config.validate_categorization_config(services.categorizer.settings)
        if config_error:
            log.warn(config_error)
        yield
        await services.orchestrator.shutdown()
        await services.categorizer.close()
        log.info("Server stopped")

    app = fastapi.FastAPI(title="Cookie Scanner", lifespan=lifespan)
    app.state.services = services

    # ========================================================================
    # Middleware
    # ========================================================================

    app.add_middleware(
        cors.CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Error Handlers
    # ========================================================================

    @app.exception_handler(errors.ScannerError)
    async def scanner_error_handler(_request: fastapi.Request, exc: errors.ScannerError) -> responses.JSONResponse:
        if exc.status_code >= 500:
            log.error("Request failed", {"code": exc.code, "error": errors.get_error_message(exc)[:300]})
        else:
            log.warn("Request rejected", {"code": exc.code, "error": errors.get_error_message(exc)[:300]})
        return responses.JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "message": exc.user_message},
        )

    @app.exception_handler(fastapi_exceptions.RequestValidationError)
    async def request_validation_handler(
        _request: fastapi.Request, exc: fastapi_exceptions.RequestValidationError
    ) -> responses.JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        )
        return responses.JSONResponse(
            status_code=400,
            content={"error": errors.UrlValidationError.code, "message": problems or "Invalid request"},
        )

    # ========================================================================
    # API Routes
    # ========================================================================

    @app.post("/api/scan", status_code=202)
    async def start_scan(body: scan.ScanRequest, request: fastapi.Request) -> scan.ScanStartResponse:
        """Accept a scan and run it in the background."""
        log.info("Incoming scan request", {"url": body.url, "subdomains": len(body.subdomains or [])})
        transaction_id = _services(request).orchestrator.start_scan(body.url, body.subdomains)
        return scan.ScanStartResponse(transaction_id=transaction_id)

    @app.get("/api/scan/{transaction_id}")
    async def get_scan(transaction_id: str, request: fastapi.Request) -> scan.ScanStatusResponse:
        """Return scan status and the cookies found so far."""
        result = _services(request).orchestrator.get_scan(_require_uuid(transaction_id))
        return orchestrator_mod.build_status_response(result)

    @app.put("/api/scan/{transaction_id}/cookie")
    async def update_cookie(
        transaction_id: str, body: scan.CookieUpdateRequest, request: fastapi.Request
    ) -> dict[str, object]:
        """Correct the category of a cookie in a completed scan."""
        updated = _services(request).orchestrator.update_cookie(_require_uuid(transaction_id), body)
        return {
            "transactionId": transaction_id,
            "updated": len(updated),
            "cookie": updated[0].model_dump(mode="json", by_alias=True),
        }

    @app.post("/api/scan/{transaction_id}/cookies", status_code=201)
    async def add_cookie(
        transaction_id: str, body: scan.CookieAddRequest, request: fastapi.Request
    ) -> scan.CookieAddResponse:
        """Manually add a cookie the scan did not discover."""
        record = _services(request).orchestrator.add_cookie(_require_uuid(transaction_id), body)
        return scan.CookieAddResponse(
            transaction_id=transaction_id,
            name=record.name,
            domain=record.domain,
            subdomain_name=record.subdomain_name,
            provider=record.provider,
        )

    # ========================================================================
    # Category Routes
    # ========================================================================

    @app.get("/api/category")
    async def list_categories(request: fastapi.Request) -> list[categorization.CategoryDefinition]:
        return _services(request).categories.list_categories()

    @app.post("/api/category", status_code=201)
    async def add_category(
        body: categorization.CategoryCreateRequest, request: fastapi.Request
    ) -> categorization.CategoryDefinition:
        return _services(request).categories.add(body.category, body.description)

    @app.put("/api/category")
    async def update_category(
        body: categorization.CategoryUpdateRequest, request: fastapi.Request
    ) -> categorization.CategoryDefinition:
        """Replace the description of an existing category."""
        return _services(request).categories.update(body.category, body.description)

    @app.get("/api/health")
    async def health(request: fastapi.Request) -> dict[str, object]:
        svc = _services(request)
        return {
            "status": "UP",
            "activeScans": svc.orchestrator.active_scans,
            "categorization": {
                "configured": svc.categorizer.configured,
                "breakerState": svc.categorizer.breaker.state,
                "cachedEntries": len(svc.categorizer.cache),
            },
        }

    @app.get("/api/metrics")
    async def get_metrics() -> dict[str, object]:
        return metrics.service_metrics.snapshot()

    return app


app = create_app()


# ============================================================================
# Start Server
# ============================================================================


def main() -> None:
    """Entry point for running the server."""
    settings = config.ServerSettings()
    log.success(f"Server listening on {settings.host}:{settings.port}")
    log.info("Environment", {"env": settings.environment})

    uvicorn.run(
        "cookie_scanner.app:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
    )


if __name__ == "__main__":
    main()
