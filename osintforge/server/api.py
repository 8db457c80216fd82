"""
Thin HTTP intake for the job pipeline.

Authentication happens upstream; the caller's identity arrives as the
X-User-Id / X-User-Role headers. Every OsintError is rendered as
{"code", "message", "details", "http_status"}.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from osintforge import __version__
from osintforge.errors import AuthenticationError, ErrorCode, NotFoundError, OsintError, RateLimitError
from osintforge.engine.lifecycle import JobRequest
from osintforge.runtime import Services, build_services

logger = logging.getLogger(__name__)


class JobSubmission(BaseModel):
    tool_name: str = Field(..., min_length=1, max_length=100)
    input: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=0, ge=-100, le=100)


class Identity(BaseModel):
    user_id: str
    role: str = "user"


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Identity:
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")
    return Identity(user_id=x_user_id, role=x_user_role or "user")


router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check():
    return {"status": "ok", "version": __version__}


@router.get("/tools")
async def list_tools(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return [meta.to_dict() for meta in services.registry.all_metadata()]


@router.post("/jobs", status_code=201)
async def submit_job(
    body: JobSubmission,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    result = await services.manager.submit(
        identity.user_id,
        identity.role,
        JobRequest(tool_name=body.tool_name, input=body.input, priority=body.priority),
    )
    headers = result.rate_limit.headers() if result.rate_limit else {}
    return JSONResponse(status_code=201, content=result.to_response(), headers=headers)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    job = await services.manager.get(job_id, owner_id=identity.user_id)
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    job = await services.manager.cancel(job_id, owner_id=identity.user_id)
    return job.to_dict()


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    job = await services.manager.retry(job_id, owner_id=identity.user_id)
    return {"id": job.id, "status": job.status.value, "progress": job.progress}


@router.post("/webhooks/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.send_test(webhook_id, owner_id=identity.user_id)
    return result.to_dict()


@router.get("/webhooks/{webhook_id}/deliveries")
async def list_deliveries(
    webhook_id: str,
    limit: int = 50,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    webhook = await services.webhooks.get(webhook_id)
    if webhook is None or webhook.owner_id != identity.user_id:
        raise NotFoundError(f"Webhook not found: {webhook_id}", code=ErrorCode.WEBHOOK_NOT_FOUND)
    deliveries = await services.webhooks.list_deliveries(webhook_id, limit=max(1, min(limit, 200)))
    return {"webhook": webhook.to_dict(), "deliveries": [d.to_dict() for d in deliveries]}


def create_app(services_factory: Callable[[], Services] = build_services) -> FastAPI:
    """
    Build the FastAPI app. Services are constructed and started inside the
    lifespan so every asyncio resource binds to the server's event loop.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = services_factory()
        await services.start()
        app.state.services = services
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title="OSINTForge API",
        description="Sandboxed OSINT tool jobs with signed webhook notifications",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(OsintError)
    async def osint_error_handler(request: Request, exc: OsintError):
        logger.warning(f"[API] {exc.code.value}: {exc.message}")
        headers: Dict[str, str] = {}
        if isinstance(exc, RateLimitError):
            headers["Retry-After"] = str(exc.retry_after_seconds)
            if exc.info is not None:
                headers.update(exc.info.headers())
        return Response(
            content=exc.to_json(), status_code=exc.http_status, media_type="application/json", headers=headers
        )

    app.include_router(router)
    return app
