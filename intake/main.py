from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from intake.api.v1 import api_router
from intake.core.errors import register_exception_handlers
from intake.core.health import APP_VERSION
from intake.core.limiter import limiter
from intake.core.logging import configure_logging
from intake.core.response_envelope import register_response_envelope
from intake.core.settings import settings
from intake.events import register_event_handlers
from intake.middlewares.request_context import RequestContextMiddleware
from intake.middlewares.security_headers import SecurityHeadersMiddleware
from intake.middlewares.trust_proxies import TrustedProxiesMiddleware
from intake.services.container import ServiceContainer


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Loan Intake Backend", version=APP_VERSION)
    if container is not None:
        app.state.container = container
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(TrustedProxiesMiddleware, proxies_count=settings.proxies_count)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.enable_hsts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
