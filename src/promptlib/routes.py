"""Prompt Library API routes."""

import logging

from fastapi import APIRouter, Depends, Request, Response

from . import auth
from .errors import AuthFailure
from .models import Credentials, Principal, PromptDraft, PromptPatch, SessionOut
from .service import PromptService

logger = logging.getLogger(__name__)

SESSION_COOKIE = "promptlib_session"


def create_router() -> APIRouter:
    """Create the API router."""
    router = APIRouter()

    def _get_db(request: Request):
        """Get the connection pool from app state."""
        return request.app.state.db

    def _service(request: Request) -> PromptService:
        return PromptService(_get_db(request))

    def _authenticate(request: Request) -> Principal:
        """Resolve the caller from the Bearer header or the session cookie.

        Runs as a dependency so an anonymous request is rejected before its
        body is validated.
        """
        token = request.headers.get("Authorization") or request.cookies.get(SESSION_COOKIE)
        if not token:
            raise AuthFailure()
        return auth.validate_token(token, request.app.state.secret_key)

    @router.get("/health")
    async def health():
        """Health check (no auth required)."""
        return {"status": "ok", "service": "promptlib"}

    @router.post("/api/auth/register")
    async def register(request: Request, body: Credentials):
        principal = await auth.register(_get_db(request), body.email, body.password)
        return principal.model_dump()

    @router.post("/api/auth/login")
    async def login(request: Request, response: Response, body: Credentials):
        principal = await auth.authenticate(_get_db(request), body.email, body.password)

        settings = request.app.state.settings
        token = auth.issue_token(
            principal,
            request.app.state.secret_key,
            max_age=settings.session_max_age_seconds,
        )
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=settings.session_max_age_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )

        logger.info(f"[AUTH] Session issued for user {principal.id}")
        return SessionOut(id=principal.id, email=principal.email, token=token).model_dump()

    @router.post("/api/auth/logout")
    async def logout(response: Response):
        response.delete_cookie(SESSION_COOKIE)
        return {"success": True}

    @router.get("/api/prompts")
    async def list_prompts(request: Request, principal: Principal = Depends(_authenticate)):
        prompts = await _service(request).list(principal)
        return [p.to_api() for p in prompts]

    @router.post("/api/prompts")
    async def create_prompt(
        request: Request,
        body: PromptDraft,
        principal: Principal = Depends(_authenticate),
    ):
        prompt = await _service(request).create(principal, body)
        return prompt.to_api()

    @router.patch("/api/prompts/{prompt_id}")
    async def update_prompt(
        request: Request,
        prompt_id: str,
        body: PromptPatch,
        principal: Principal = Depends(_authenticate),
    ):
        prompt = await _service(request).update(principal, prompt_id, body)
        return prompt.to_api()

    @router.delete("/api/prompts/{prompt_id}")
    async def delete_prompt(
        request: Request,
        prompt_id: str,
        principal: Principal = Depends(_authenticate),
    ):
        await _service(request).delete(principal, prompt_id)
        return {"success": True}

    return router
