"""FastAPI application assembly."""

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import Guards, create_auth_router, create_devices_router
from auth.codes import CodeManager
from auth.config import AuthConfig
from auth.guards import AccessGuard, RecoveryCodeGuard, RefreshGuard
from auth.service import AuthService
from auth.session import SessionRegistry
from auth.tokens import TokenService


def build_guards(
    config: AuthConfig,
    token_service: TokenService,
    session_registry: SessionRegistry,
    code_manager: CodeManager,
) -> Guards:
    """Guard instances sharing the process-wide services."""
    return Guards(
        access=AccessGuard(token_service),
        refresh=RefreshGuard(token_service, session_registry, cookie_name=config.refresh_cookie_name),
        recovery_code=RecoveryCodeGuard(code_manager),
    )


def create_app(config: AuthConfig, auth_service: AuthService, guards: Guards) -> FastAPI:
    """Create the app with routes, error handlers and request IDs."""
    app = FastAPI(title=config.app_name)

    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_auth_router(auth_service, guards, config), prefix="/auth")
    app.include_router(create_devices_router(auth_service, guards), prefix="/security")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
