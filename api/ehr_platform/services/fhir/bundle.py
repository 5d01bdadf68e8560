"""
Bundle Builder - search / history envelopes and version headers
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .versioning import VersionAction, VersionEntry


# ============================================================
# Pydantic Models
# ============================================================

class _FHIRModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BundleLink(_FHIRModel):
    relation: str
    url: str


class BundleEntrySearch(_FHIRModel):
    mode: str = "match"


class BundleEntryRequest(_FHIRModel):
    method: str
    url: str


class BundleEntryResponse(_FHIRModel):
    status: str
    etag: Optional[str] = None
    last_modified: Optional[str] = Field(default=None, alias="lastModified")


class BundleEntry(_FHIRModel):
    full_url: Optional[str] = Field(default=None, alias="fullUrl")
    resource: Optional[Dict[str, Any]] = None
    search: Optional[BundleEntrySearch] = None
    request: Optional[BundleEntryRequest] = None
    response: Optional[BundleEntryResponse] = None


class Bundle(_FHIRModel):
    resource_type: str = Field(default="Bundle", alias="resourceType")
    type: str
    total: Optional[int] = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    link: List[BundleLink] = Field(default_factory=list)
    entry: List[BundleEntry] = Field(default_factory=list)


@dataclass
class SearchBundleParams:
    """Paging context of one search response"""
    base_url: str
    query_string: str = ""
    count: int = 20
    offset: int = 0
    total: int = 0


# ============================================================
# Search bundles
# ============================================================

_PAGING_KEYS = {"_count", "_offset"}


def _page_url(base_url: str, query_string: str, count: int, offset: int) -> str:
    kept = [
        part
        for part in query_string.lstrip("?").split("&")
        if part and part.split("=", 1)[0] not in _PAGING_KEYS
    ]
    kept.append(f"_count={count}")
    kept.append(f"_offset={offset}")
    return f"{base_url}?{'&'.join(kept)}"


def build_pagination_links(params: SearchBundleParams) -> List[BundleLink]:
    """self always; next iff count > 0 and offset+count < total; previous iff offset > 0."""
    links = [
        BundleLink(
            relation="self",
            url=_page_url(params.base_url, params.query_string, params.count, params.offset),
        )
    ]
    if params.count > 0 and params.offset + params.count < params.total:
        links.append(BundleLink(
            relation="next",
            url=_page_url(params.base_url, params.query_string, params.count, params.offset + params.count),
        ))
    if params.offset > 0:
        links.append(BundleLink(
            relation="previous",
            url=_page_url(
                params.base_url, params.query_string, params.count, max(params.offset - params.count, 0)
            ),
        ))
    return links


def _resource_reference(resource: Dict[str, Any]) -> Optional[str]:
    rtype, rid = resource.get("resourceType"), resource.get("id")
    if rtype and rid:
        return f"{rtype}/{rid}"
    return None


def new_search_bundle(resources: List[Dict[str, Any]], params: SearchBundleParams) -> Bundle:
    return Bundle(
        type="searchset",
        total=params.total,
        link=build_pagination_links(params),
        entry=[
            BundleEntry(
                full_url=_resource_reference(resource),
                resource=resource,
                search=BundleEntrySearch(mode="match"),
            )
            for resource in resources
        ],
    )


# ============================================================
# History bundles
# ============================================================

_REQUEST_METHOD = {
    VersionAction.CREATE: ("POST", "201 Created"),
    VersionAction.UPDATE: ("PUT", "200 OK"),
    VersionAction.DELETE: ("DELETE", "204 No Content"),
}


def history_entry(entry: VersionEntry, base_url: str = "") -> BundleEntry:
    method, status = _REQUEST_METHOD[entry.action]
    request_url = entry.resource_type if method == "POST" else entry.reference
    resource = entry.snapshot if isinstance(entry.snapshot, dict) and not entry.is_deleted else None
    return BundleEntry(
        full_url=location_header(base_url, entry.resource_type, entry.resource_id, entry.version_id),
        resource=resource,
        request=BundleEntryRequest(method=method, url=request_url),
        response=BundleEntryResponse(
            status=status,
            etag=format_etag(entry.version_id),
            last_modified=entry.timestamp.isoformat(),
        ),
    )


def new_history_bundle(entries: List[VersionEntry], total: int, base_url: str = "") -> Bundle:
    """History bundle; entries are emitted newest-first regardless of input order."""
    ordered = sorted(entries, key=lambda e: (e.timestamp, e.version_id), reverse=True)
    return Bundle(
        type="history",
        total=total,
        entry=[history_entry(e, base_url) for e in ordered],
    )


# ============================================================
# Version headers
# ============================================================

_ETAG = re.compile(r'^(?:W/)?"?(\d+)"?$')


def format_etag(version_id: int) -> str:
    return f'W/"{version_id}"'


def format_http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def version_headers(version_id: int, last_modified: datetime) -> Dict[str, str]:
    """ETag and Last-Modified for read / vread responses."""
    return {
        "ETag": format_etag(version_id),
        "Last-Modified": format_http_date(last_modified),
    }


def location_header(base_url: str, resource_type: str, resource_id: str, version_id: int) -> str:
    path = f"{resource_type}/{resource_id}/_history/{version_id}"
    base = base_url.rstrip("/")
    return f"{base}/{path}" if base else path


def parse_etag(value: Optional[str]) -> Optional[int]:
    """If-Match / ETag value -> version id; None when absent or unparseable."""
    if not value:
        return None
    match = _ETAG.match(value.strip())
    return int(match.group(1)) if match else None
