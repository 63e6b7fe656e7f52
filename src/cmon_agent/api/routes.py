"""
HTTP routes for the metrics endpoints.

Provides GZ and per-guest metrics in exposition format plus the legacy
refresh endpoint.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header
from fastapi.responses import PlainTextResponse, Response

from cmon_agent.core.config import decode_cmon_options
from cmon_agent.core.constants import CMON_OPTS_HEADER, CONTAINER_NOT_FOUND, EXPOSITION_CONTENT_TYPE
from cmon_agent.core.errors import CmonAgentError, GuestNotFoundError
from cmon_agent.engine import CollectionEngine, CollectionRequest
from cmon_agent.exposition import format_exposition

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "internal error"


def _metrics_response(body: bytes) -> Response:
    return Response(content=body, media_type=EXPOSITION_CONTENT_TYPE)


def create_routes(engine: CollectionEngine) -> APIRouter:
    """
    Create API routes bound to a collection engine.

    Args:
        engine: The process-wide CollectionEngine

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/v1")

    @router.get("/gz/metrics")
    async def gz_metrics() -> Response:
        """Global zone metrics."""
        try:
            snapshot = await engine.collect(CollectionRequest.for_gz())
        except CmonAgentError as e:
            logger.error(f"GZ collection failed: {e}")
            return PlainTextResponse(INTERNAL_ERROR, status_code=500)
        return _metrics_response(format_exposition(snapshot))

    @router.get("/{vm_uuid}/metrics")
    async def guest_metrics(
        vm_uuid: str,
        cmon_opts: str | None = Header(default=None, alias=CMON_OPTS_HEADER),
    ) -> Response:
        """Metrics for one guest."""
        try:
            options = decode_cmon_options(cmon_opts)
        except ValueError as e:
            logger.warning(f"Rejecting request for {vm_uuid}: {e}")
            return PlainTextResponse(str(e), status_code=400)

        request = CollectionRequest.for_guest(vm_uuid, core=options.is_core_zone)
        try:
            snapshot = await engine.collect(request)
            context = snapshot.guest(vm_uuid)
        except GuestNotFoundError:
            return PlainTextResponse(CONTAINER_NOT_FOUND, status_code=404)
        except CmonAgentError as e:
            logger.error(f"Collection for {vm_uuid} failed: {e}")
            return PlainTextResponse(INTERNAL_ERROR, status_code=500)

        if not context.resolved:
            logger.error(f"Collection for {vm_uuid} failed: {context.error}")
            return PlainTextResponse(INTERNAL_ERROR, status_code=500)
        return _metrics_response(format_exposition(snapshot))

    @router.post("/refresh")
    async def refresh() -> Response:
        """Legacy no-op; guests are resolved on every request."""
        return Response(status_code=200)

    return router
