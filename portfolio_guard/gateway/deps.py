# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""FastAPI dependencies: the service container and the admin guard."""

import logging
import secrets

from fastapi import Header, HTTPException, Request

from ..observability.logging import set_request_context
from ..services import Services

logger = logging.getLogger(__name__)

ADMIN_ACTOR = "admin"


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def require_admin(
    request: Request,
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
) -> str:
    """Constant-time comparison against SECURITY_ADMIN_TOKEN."""
    services = get_services(request)
    expected = services.settings.security.admin_token
    if not x_admin_token:
        raise HTTPException(status_code=401, detail="Admin token required")
    if not secrets.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning(f"Rejected admin request to {request.url.path}")
        raise HTTPException(status_code=403, detail="Admin access required")

    set_request_context(actor=ADMIN_ACTOR)
    return ADMIN_ACTOR


__all__ = ["get_services", "require_admin", "ADMIN_ACTOR"]
