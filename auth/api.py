"""HTTP routes for authentication and device sessions.

Handlers are plain functions so FastAPI runs them in its threadpool: a
client that disconnects mid-request can't interrupt a store write that has
already started.
"""

from dataclasses import dataclass
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response

from auth.config import AuthConfig
from auth.guards import (
    AccessContext,
    AccessGuard,
    RecoveryCodeGuard,
    RecoveryContext,
    RefreshContext,
    RefreshGuard,
    get_client_ip,
)
from auth.service import AuthService
from auth.types import (
    ConfirmationRequest,
    EmailRequest,
    LoginRequest,
    NewPasswordRequest,
    RegistrationRequest,
    TokenPair,
)


@dataclass(frozen=True)
class Guards:
    """Guard instances shared by the auth and device routers."""

    access: AccessGuard
    refresh: RefreshGuard
    recovery_code: RecoveryCodeGuard


def _set_refresh_cookie(response: Response, config: AuthConfig, tokens: TokenPair) -> None:
    response.set_cookie(
        key=config.refresh_cookie_name,
        value=tokens.refresh_token,
        httponly=True,
        secure=config.refresh_cookie_secure,
        samesite="strict",
        max_age=config.refresh_token_max_age_seconds,
    )


def create_auth_router(auth_service: AuthService, guards: Guards, config: AuthConfig) -> APIRouter:
    """Create auth router with injected service and guards."""
    router = APIRouter(tags=["auth"])

    @router.post("/login")
    def login(request: Request, response: Response, body: LoginRequest):
        """Sign in a new device. Sets the refresh cookie."""
        tokens = auth_service.login(
            login_or_email=body.login_or_email,
            password=body.password,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        _set_refresh_cookie(response, config, tokens)
        return {"accessToken": tokens.access_token}

    @router.post("/refresh-token")
    def refresh_token(response: Response, ctx: RefreshContext = Depends(guards.refresh)):
        """Rotate the device session. The old refresh cookie stops working."""
        tokens = auth_service.refresh(
            user_id=ctx.user_id,
            device_id=ctx.device_id,
            issued_at=ctx.issued_at,
            ip_address=ctx.ip,
            user_agent=ctx.user_agent,
        )
        _set_refresh_cookie(response, config, tokens)
        return {"accessToken": tokens.access_token}

    @router.post("/logout", status_code=204)
    def logout(ctx: RefreshContext = Depends(guards.refresh)):
        """End this device's session and clear the cookie."""
        auth_service.logout(ctx.user_id, ctx.device_id, ip_address=ctx.ip)
        response = Response(status_code=204)
        response.delete_cookie(
            key=config.refresh_cookie_name,
            httponly=True,
            secure=config.refresh_cookie_secure,
            samesite="strict",
        )
        return response

    @router.get("/me")
    def get_current_user(ctx: AccessContext = Depends(guards.access)):
        """Profile of the access token's owner."""
        profile = auth_service.get_me(ctx.user_id)
        return {
            "userId": str(profile.user_id),
            "login": profile.login,
            "email": profile.email,
        }

    @router.post("/registration", status_code=204)
    def registration(request: Request, body: RegistrationRequest):
        """Create an account and send the confirmation email."""
        auth_service.register(
            login=body.login,
            email=body.email,
            password=body.password,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return Response(status_code=204)

    @router.post("/registration-confirmation", status_code=204)
    def registration_confirmation(body: ConfirmationRequest):
        """Confirm the account email with the mailed code."""
        auth_service.confirm_email(body.code)
        return Response(status_code=204)

    @router.post("/registration-email-resending", status_code=204)
    def registration_email_resending(body: EmailRequest):
        """Send a new confirmation code. Same response for any email."""
        auth_service.resend_confirmation(body.email)
        return Response(status_code=204)

    @router.post("/password-recovery", status_code=204)
    def password_recovery(request: Request, body: EmailRequest):
        """Send a recovery code. Same response for any email."""
        auth_service.request_password_recovery(body.email, ip_address=get_client_ip(request))
        return Response(status_code=204)

    @router.post("/new-password", status_code=204)
    def new_password(
        request: Request,
        body: NewPasswordRequest,
        ctx: RecoveryContext = Depends(guards.recovery_code),
    ):
        """Set a new password with a recovery code. Signs out every device."""
        auth_service.set_new_password(
            recovery_code=ctx.recovery_code,
            new_password=body.new_password,
            ip_address=get_client_ip(request),
        )
        return Response(status_code=204)

    return router


def create_devices_router(auth_service: AuthService, guards: Guards) -> APIRouter:
    """Create router for listing and terminating device sessions."""
    router = APIRouter(tags=["security"])

    @router.get("/devices")
    def list_devices(ctx: RefreshContext = Depends(guards.refresh)):
        """Every signed-in device of the caller."""
        return [
            {
                "deviceId": str(session.device_id),
                "ip": session.ip,
                "title": session.user_agent or "Unknown device",
                "lastActiveDate": session.issued_at.isoformat(),
            }
            for session in auth_service.list_devices(ctx.user_id)
        ]

    @router.delete("/devices", status_code=204)
    def terminate_other_devices(ctx: RefreshContext = Depends(guards.refresh)):
        """Sign out every device except this one."""
        auth_service.revoke_other_devices(ctx.user_id, ctx.device_id, ip_address=ctx.ip)
        return Response(status_code=204)

    @router.delete("/devices/{device_id}", status_code=204)
    def terminate_device(device_id: UUID, ctx: RefreshContext = Depends(guards.refresh)):
        """Sign out one of the caller's devices."""
        auth_service.revoke_device(ctx.user_id, device_id, ip_address=ctx.ip)
        return Response(status_code=204)

    return router
