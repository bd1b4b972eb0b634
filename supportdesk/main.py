"""FastAPI application wiring for SupportDesk.

``create_app`` assembles one application instance:

- Loads settings from the environment (``.env`` supported) and validates the
  industry prompt guidelines so a misconfigured deployment fails at start-up.
- Configures logging, Prometheus metrics and rate limiting.
- Builds the conversation store, the text generator, the tenant directory and
  the channel adapters, and shares them with the routers via ``app.state``.
- Maps the engine's error taxonomy onto HTTP status codes.

Every collaborator can be injected, which is how the tests swap in fake
generators and recording gateways.
"""

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .channels import SmsAdapter, WebAdapter, WhatsAppAdapter, gateways
from .channels.gateways import GatewayFactory
from .config import Settings, load_settings
from .conversations.repository import build_repository
from .conversations.service import ConversationService
from .conversations.store import ConversationStore
from .dependencies import AppContext
from .errors import SupportDeskError
from .generation import INDUSTRY_GUIDELINES, ResponseGenerator, validate_guidelines
from .generation.backends import TextGenerator, build_text_generator
from .nlp import IntentClassifier
from .rate_limits import install_rate_limits
from .routers import chat, conversations, webhooks
from .tenants import TenantDirectory

load_dotenv()

logger = logging.getLogger(__name__)


async def _support_desk_error_handler(request: Request, exc: SupportDeskError):
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ConversationStore] = None,
    generator: Optional[TextGenerator] = None,
    classifier: Optional[IntentClassifier] = None,
    tenants: Optional[TenantDirectory] = None,
    sms_gateway_factory: Optional[GatewayFactory] = None,
    whatsapp_gateway_factory: Optional[GatewayFactory] = None,
) -> FastAPI:
    """Build a fully wired application instance."""
    settings = settings or load_settings()
    validate_guidelines(INDUSTRY_GUIDELINES)

    app = FastAPI(title="SupportDesk", version=__version__)
    init_logging(app)
    app.add_exception_handler(SupportDeskError, _support_desk_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    install_rate_limits(app, settings)

    store = store or ConversationStore(build_repository(settings.database_url))
    if tenants is None:
        tenants = (
            TenantDirectory.from_file(settings.tenants_file)
            if settings.tenants_file
            else TenantDirectory()
        )
    backend = generator or build_text_generator(settings)
    service = ConversationService(
        store,
        ResponseGenerator(backend, settings=settings),
        classifier=classifier,
        settings=settings,
    )
    app.state.context = AppContext(
        settings=settings,
        store=store,
        service=service,
        tenants=tenants,
        web=WebAdapter(max_message_length=settings.chat_max_message_length),
        sms=SmsAdapter(
            tenants,
            default_tenant=settings.default_sms_tenant,
            max_length=settings.sms_max_length,
            gateway_factory=sms_gateway_factory
            or gateways.twilio_gateway_factory(settings.outbound_timeout),
        ),
        whatsapp=WhatsAppAdapter(
            tenants,
            verify_token=settings.whatsapp_verify_token,
            gateway_factory=whatsapp_gateway_factory
            or gateways.whatsapp_gateway_factory(settings.outbound_timeout),
        ),
    )
    logger.info(
        "SupportDesk %s started with %s generator and %d tenants",
        __version__,
        service.generator_name,
        len(tenants),
    )

    app.include_router(chat.router)
    app.include_router(webhooks.router)
    app.include_router(conversations.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Each app gets its own registry so several instances can coexist.
    Instrumentator(registry=CollectorRegistry()).instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
