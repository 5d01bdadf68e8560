"""
History API Router.

Platform-level _history endpoints shared by every resource type: system,
type and instance history bundles plus version reads (vread).
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.responses import JSONResponse

from ehr_platform.core import get_logger, bind_resource
from ehr_platform.core.config import Settings, get_settings
from ehr_platform.dependencies import get_tracker
from ehr_platform.exceptions import ResourceGoneError, ResourceNotFoundError
from ehr_platform.services.fhir.bundle import new_history_bundle, version_headers
from ehr_platform.services.fhir.search import parse_count, parse_offset
from ehr_platform.services.fhir.versioning import VersionTracker

logger = get_logger(__name__)

router = APIRouter()

FHIR_JSON = "application/fhir+json"

RESOURCE_TYPE_PATTERN = r"^[A-Z][A-Za-z]{1,63}$"
RESOURCE_ID_PATTERN = r"^[A-Za-z0-9\-\.]{1,64}$"


def _fhir_base(request: Request, settings: Settings) -> str:
    return str(request.base_url).rstrip("/") + settings.fhir_base_url


def _since(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _paging(request: Request, settings: Settings):
    params = request.query_params
    count = parse_count(params, settings.default_page_size, settings.max_page_size)
    return count, parse_offset(params)


# ============================================================
# Endpoints
# ============================================================

@router.get("/_history", summary="System history")
async def system_history(
    request: Request,
    since: Optional[datetime] = Query(None, alias="_since"),
    tracker: VersionTracker = Depends(get_tracker),
    settings: Settings = Depends(get_settings),
):
    """Versions of every resource, newest first."""
    count, offset = _paging(request, settings)
    entries, total = await tracker.list_system_history(_since(since), count, offset)
    bundle = new_history_bundle(entries, total, _fhir_base(request, settings))
    return JSONResponse(content=bundle.to_dict(), media_type=FHIR_JSON)


@router.get("/{resource_type}/_history", summary="Type history")
async def type_history(
    request: Request,
    resource_type: str = Path(..., pattern=RESOURCE_TYPE_PATTERN),
    since: Optional[datetime] = Query(None, alias="_since"),
    tracker: VersionTracker = Depends(get_tracker),
    settings: Settings = Depends(get_settings),
):
    bind_resource(resource_type)
    count, offset = _paging(request, settings)
    entries, total = await tracker.list_type_history(resource_type, _since(since), count, offset)
    bundle = new_history_bundle(entries, total, _fhir_base(request, settings))
    return JSONResponse(content=bundle.to_dict(), media_type=FHIR_JSON)


@router.get("/{resource_type}/{resource_id}/_history", summary="Instance history")
async def instance_history(
    request: Request,
    resource_type: str = Path(..., pattern=RESOURCE_TYPE_PATTERN),
    resource_id: str = Path(..., pattern=RESOURCE_ID_PATTERN),
    tracker: VersionTracker = Depends(get_tracker),
    settings: Settings = Depends(get_settings),
):
    """All versions of one resource (tombstones included), newest first."""
    bind_resource(resource_type, resource_id)
    count, offset = _paging(request, settings)
    entries, total = await tracker.list_instance_history(resource_type, resource_id, count, offset)
    if total == 0:
        raise ResourceNotFoundError(resource_type, resource_id)
    bundle = new_history_bundle(entries, total, _fhir_base(request, settings))
    return JSONResponse(content=bundle.to_dict(), media_type=FHIR_JSON)


@router.get("/{resource_type}/{resource_id}/_history/{version_id}", summary="Version read")
async def vread(
    resource_type: str = Path(..., pattern=RESOURCE_TYPE_PATTERN),
    resource_id: str = Path(..., pattern=RESOURCE_ID_PATTERN),
    version_id: int = Path(..., ge=1),
    tracker: VersionTracker = Depends(get_tracker),
):
    """One historical version with ETag / Last-Modified; a delete tombstone answers 410."""
    bind_resource(resource_type, resource_id)
    entry = await tracker.get_version(resource_type, resource_id, version_id)
    if entry.is_deleted:
        raise ResourceGoneError(resource_type, resource_id, version_id)
    return JSONResponse(
        content=entry.snapshot,
        media_type=FHIR_JSON,
        headers=version_headers(entry.version_id, entry.timestamp),
    )
