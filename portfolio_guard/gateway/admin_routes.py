# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Admin API Routes

Everything here requires the X-Admin-Token header.

Endpoints for:
- Reflink lifecycle (CRUD, bulk update, usage statistics, budget)
- Blacklist administration (list, ban, reinstate, remove, analytics)
- Content sources (list, toggle, priority, config)
- Rate limits (analytics, reset)
- Context cache (stats, clear)
- Notifications (recent, flush) and maintenance
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ..access.models import CreateReflinkParams, UpdateReflinkParams
from ..services import Services
from .deps import get_services, require_admin
from .schemas import (
    BlacklistRequest,
    BulkReflinkUpdate,
    BulkReinstateRequest,
    RateLimitResetRequest,
    ReinstateRequest,
    SourceUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


# ============================================================
# REFLINKS
# ============================================================


@router.get("/reflinks")
async def list_reflinks(
    is_active: bool | None = Query(None),
    include_expired: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    reflinks, total = await services.reflinks.list_reflinks(
        is_active=is_active, include_expired=include_expired, limit=limit, offset=offset
    )
    return {
        "reflinks": [r.model_dump(mode="json") for r in reflinks],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("/reflinks", status_code=201)
async def create_reflink(
    params: CreateReflinkParams,
    actor: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    reflink = await services.reflinks.create(params, created_by=actor)
    return reflink.model_dump(mode="json")


@router.post("/reflinks/generate-code")
async def generate_reflink_code(
    prefix: str = Query("ref", pattern=r"^[a-zA-Z0-9_-]{1,20}$"),
    services: Services = Depends(get_services),
):
    return {"code": await services.reflinks.generate_unique_code(prefix)}


@router.post("/reflinks/bulk")
async def bulk_update_reflinks(body: BulkReflinkUpdate, services: Services = Depends(get_services)):
    updated = await services.reflinks.bulk_update(
        body.reflink_ids, is_active=body.is_active, tier=body.tier
    )
    return {"updated": updated}


@router.post("/reflinks/cleanup")
async def cleanup_expired_reflinks(services: Services = Depends(get_services)):
    return {"deactivated": await services.reflinks.cleanup_expired()}


@router.get("/reflinks/{reflink_id}")
async def get_reflink(reflink_id: str, services: Services = Depends(get_services)):
    reflink = await services.reflinks.get_by_id(reflink_id)
    if reflink is None:
        raise HTTPException(status_code=404, detail="Reflink not found")
    return reflink.model_dump(mode="json")


@router.patch("/reflinks/{reflink_id}")
async def update_reflink(
    reflink_id: str, params: UpdateReflinkParams, services: Services = Depends(get_services)
):
    reflink = await services.reflinks.update(reflink_id, params)
    return reflink.model_dump(mode="json")


@router.delete("/reflinks/{reflink_id}", status_code=204)
async def delete_reflink(reflink_id: str, services: Services = Depends(get_services)):
    await services.reflinks.delete(reflink_id)


@router.get("/reflinks/{reflink_id}/usage")
async def get_reflink_usage(
    reflink_id: str,
    days: int = Query(7, ge=1, le=90),
    services: Services = Depends(get_services),
):
    if await services.reflinks.get_by_id(reflink_id) is None:
        raise HTTPException(status_code=404, detail="Reflink not found")
    stats = await services.reflinks.get_usage_stats(reflink_id, days=days)
    events = await services.reflinks.get_usage_events(reflink_id)
    return {
        **stats.to_dict(),
        "events": [e.model_dump(mode="json") for e in events[-100:]],
    }


@router.get("/reflinks/{reflink_id}/budget")
async def get_reflink_budget(reflink_id: str, services: Services = Depends(get_services)):
    status = await services.reflinks.get_remaining_budget(reflink_id)
    return status.to_dict()


# ============================================================
# BLACKLIST
# ============================================================


@router.get("/blacklist")
async def list_blacklist(
    include_reinstated: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    entries, total = await services.blacklist.list_entries(
        include_reinstated=include_reinstated, limit=limit, offset=offset
    )
    return {
        "entries": [{**e.model_dump(mode="json"), "status": e.status} for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/blacklist/analytics")
async def blacklist_analytics(
    days: int = Query(7, ge=1, le=365), services: Services = Depends(get_services)
):
    analytics = await services.blacklist.get_analytics(days=days)
    return analytics.to_dict()


@router.post("/blacklist", status_code=201)
async def blacklist_ip(body: BlacklistRequest, services: Services = Depends(get_services)):
    entry = await services.blacklist.blacklist_ip(body.ip_address, body.reason)
    await services.notifier.notify_blacklist(body.ip_address, entry)
    return entry.model_dump(mode="json")


@router.post("/blacklist/bulk-reinstate")
async def bulk_reinstate(
    body: BulkReinstateRequest,
    actor: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    count = await services.blacklist.bulk_reinstate(body.ip_addresses, actor, body.reason)
    return {"reinstated": count}


@router.post("/blacklist/{ip_address}/reinstate")
async def reinstate_ip(
    ip_address: str,
    body: ReinstateRequest,
    actor: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    entry = await services.blacklist.reinstate(ip_address, actor, body.reason)
    await services.notifier.notify_reinstatement(ip_address, entry, actor, body.reason)
    return entry.model_dump(mode="json")


@router.delete("/blacklist/{ip_address}", status_code=204)
async def remove_blacklist_entry(ip_address: str, services: Services = Depends(get_services)):
    await services.blacklist.remove(ip_address)


# ============================================================
# CONTENT SOURCES
# ============================================================


@router.get("/sources")
async def list_sources(
    probe: bool = Query(False, description="Ask each provider for availability and metadata"),
    services: Services = Depends(get_services),
):
    sources = await services.registry.list_sources(probe=probe)
    return {"sources": [s.to_dict() for s in sources]}


@router.patch("/sources/{source_id}")
async def update_source(
    source_id: str, body: SourceUpdate, services: Services = Depends(get_services)
):
    config = await services.registry.get_config(source_id)
    if body.priority is not None:
        config = await services.registry.set_priority(source_id, body.priority)
    if body.enabled is not None:
        config = await services.registry.toggle(source_id, body.enabled)
    if body.config:
        config = await services.registry.update_config(source_id, body.config)
    return config.model_dump(mode="json")


# ============================================================
# RATE LIMITS
# ============================================================


@router.get("/rate-limits/analytics")
async def rate_limit_analytics(
    days: int = Query(7, ge=1, le=90), services: Services = Depends(get_services)
):
    analytics = await services.rate_limiter.get_analytics(days=days)
    return analytics.to_dict()


@router.post("/rate-limits/reset")
async def reset_rate_limit(
    body: RateLimitResetRequest, services: Services = Depends(get_services)
):
    removed = await services.rate_limiter.reset(
        body.identifier, body.identifier_type, reflink_id=body.reflink_id
    )
    return {"reset": removed}


# ============================================================
# CONTEXT CACHE
# ============================================================


@router.get("/context/cache")
async def context_cache_stats(services: Services = Depends(get_services)):
    stats = await services.context_manager.get_cache_stats()
    return stats.to_dict()


@router.delete("/context/cache")
async def clear_context_cache(services: Services = Depends(get_services)):
    return {"cleared": await services.context_manager.clear_all_cache()}


@router.delete("/context/cache/{session_id}")
async def clear_session_context(session_id: str, services: Services = Depends(get_services)):
    return {"cleared": await services.context_manager.clear_session_cache(session_id)}


# ============================================================
# NOTIFICATIONS AND MAINTENANCE
# ============================================================


@router.get("/notifications")
async def recent_notifications(
    limit: int = Query(50, ge=1, le=500), services: Services = Depends(get_services)
):
    notifier = services.notifier
    return {
        "notifications": [n.to_dict() for n in notifier.get_recent_notifications(limit)],
        "pending": notifier.pending_count,
    }


@router.post("/notifications/flush")
async def flush_notifications(services: Services = Depends(get_services)):
    return {"sent_groups": await services.notifier.flush()}


@router.post("/maintenance/cleanup")
async def run_cleanup(services: Services = Depends(get_services)):
    report = await services.run_cleanup()
    return report.to_dict()


__all__ = ["router"]
