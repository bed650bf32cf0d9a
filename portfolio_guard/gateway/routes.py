# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Public API Routes

- POST /access/check       admission check with rate-limit headers
- POST /context            admission, then access-filtered context
- POST /usage              budget accounting and content inspection (admin token)
- GET  /reflinks/{code}    welcome payload for a reflink visitor
- GET  /rate-limit/status  caller's window without consuming a request
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..access.models import IdentifierType, UsageEvent
from ..services import AdmissionDecision, AdmissionRequest, Services
from .deps import get_services, require_admin
from .request_context import client_ip, request_id
from .schemas import AccessCheckRequest, ContextRequest, UsageRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Access"])

CONTEXT_ENDPOINT = "/api/v1/context"


# ============================================================
# HELPERS
# ============================================================


def _identifier(
    identifier_type: IdentifierType,
    identifier: str | None,
    ip: str | None,
    session_id: str | None = None,
    reflink_code: str | None = None,
) -> str | None:
    """Pick the identifier the window is keyed on; IPs come from the connection only."""
    if identifier_type == IdentifierType.IP:
        return ip
    if identifier_type == IdentifierType.SESSION:
        return identifier or session_id
    return identifier or reflink_code


def _admission_request(
    request: Request,
    services: Services,
    identifier_type: IdentifierType,
    identifier: str | None,
    endpoint: str,
    reflink_code: str | None,
) -> AdmissionRequest:
    user_agent = request.headers.get("User-Agent")
    shape = services.abuse.analyze_request(
        user_agent, request.url.query or None, request.headers.get("Accept")
    )
    return AdmissionRequest(
        identifier=identifier,
        identifier_type=identifier_type,
        endpoint=endpoint,
        reflink_code=reflink_code,
        ip_address=client_ip(request),
        user_agent=user_agent,
        shape=shape,
    )


def _deny(request: Request, decision: AdmissionDecision) -> JSONResponse:
    content = decision.to_dict()
    content["request_id"] = request_id(request)
    return JSONResponse(
        status_code=decision.status_code, content=content, headers=decision.headers()
    )


# ============================================================
# ADMISSION
# ============================================================


@router.post("/access/check")
async def check_access(
    body: AccessCheckRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Run the admission pipeline for one AI request.

    200 with rate-limit headers when admitted; otherwise the deny status
    (403, 429, 402, 404 or 503) with a structured reason.
    """
    ip = client_ip(request)
    admission = _admission_request(
        request,
        services,
        body.identifier_type,
        _identifier(
            body.identifier_type,
            body.identifier,
            ip,
            session_id=request.headers.get("X-Session-ID"),
            reflink_code=body.reflink_code,
        ),
        body.endpoint,
        body.reflink_code,
    )
    decision = await services.orchestrator.admit(admission)
    if not decision.allowed:
        return _deny(request, decision)
    return JSONResponse(content=decision.to_dict(), headers=decision.headers())


# ============================================================
# CONTEXT
# ============================================================


@router.post("/context")
async def get_context(
    body: ContextRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    """Admit the request, then return context filtered by access level."""
    identifier_type = IdentifierType.REFLINK if body.reflink_code else IdentifierType.SESSION
    admission = _admission_request(
        request,
        services,
        identifier_type,
        _identifier(
            identifier_type,
            None,
            client_ip(request),
            session_id=body.session_id,
            reflink_code=body.reflink_code,
        ),
        CONTEXT_ENDPOINT,
        body.reflink_code,
    )
    decision = await services.orchestrator.admit(admission)
    if not decision.allowed:
        return _deny(request, decision)

    context = await services.orchestrator.load_context(
        body.session_id,
        body.query,
        reflink_code=body.reflink_code,
        access_level=body.access_level,
        max_tokens=body.max_tokens,
    )
    content = context.to_dict()
    if decision.budget_message:
        content["budget_message"] = decision.budget_message
    return JSONResponse(content=content, headers=decision.headers())


# ============================================================
# USAGE
# ============================================================


@router.post("/usage", dependencies=[Depends(require_admin)])
async def record_usage(
    body: UsageRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Record a completed model call.

    Called server to server after the LLM responds. The visitor's message
    in `content` is inspected for abuse against the client IP.
    """
    event = UsageEvent(
        type=body.type,
        tokens=body.tokens,
        cost=body.cost,
        model_used=body.model_used,
        endpoint=body.endpoint,
        metadata=body.metadata,
    )
    outcome = await services.orchestrator.record_usage(
        body.reflink_code,
        event,
        content=body.content,
        ip_address=request.headers.get("X-Visitor-IP") or client_ip(request),
        user_agent=request.headers.get("X-Visitor-User-Agent"),
        session_id=body.session_id,
    )
    return outcome.to_dict()


# ============================================================
# REFLINK SESSIONS
# ============================================================


@router.get("/reflinks/{code}")
async def get_reflink_session(code: str, services: Services = Depends(get_services)):
    """Welcome message, capabilities and budget for a visitor's reflink."""
    session = await services.reflinks.initialize_session(code)
    if session is None:
        raise HTTPException(status_code=404, detail="Invalid or expired reflink")

    data = session.to_dict()
    # Visitors only see what the reflink grants them
    reflink = data.pop("reflink")
    data["reflink"] = {
        "code": reflink["code"],
        "name": reflink["name"],
        "tier": reflink["tier"],
        "expires_at": reflink["expires_at"],
        "recipient_name": reflink["recipient_name"],
    }
    return data


@router.get("/rate-limit/status")
async def get_rate_limit_status(
    request: Request,
    reflink_code: str | None = Query(None, max_length=50),
    services: Services = Depends(get_services),
):
    identifier_type = IdentifierType.REFLINK if reflink_code else IdentifierType.IP
    identifier = reflink_code if reflink_code else client_ip(request)
    status = await services.rate_limiter.get_status(
        identifier, identifier_type, reflink_code=reflink_code
    )
    return status.to_dict()


__all__ = ["router"]
