"""
FHIR resource protocol core.

Components:
- document / patch / merge_patch / patch_request: JSON documents and PATCH engines
- versioning / pg_history: append-only version log with optimistic concurrency
- search: parameterized SQL from search parameters
- bundle / outcome: response envelopes and version headers
"""

from .document import parse_json, clone, deep_equal, parse_pointer, resolve_pointer
from .patch import PatchOp, PatchOperation, parse_json_patch, apply_json_patch
from .merge_patch import parse_merge_patch, apply_merge_patch
from .patch_request import PatchFormat, resolve_patch_format, apply_patch_request
from .versioning import (
    VersionAction,
    VersionEntry,
    HistoryStore,
    InMemoryHistoryStore,
    VersionTracker,
)
from .pg_history import PostgresHistoryStore
from .search import (
    SearchParamType,
    SearchParam,
    SearchQuery,
    parse_count,
    parse_offset,
)
from .bundle import (
    Bundle,
    SearchBundleParams,
    new_search_bundle,
    new_history_bundle,
    version_headers,
    location_header,
    parse_etag,
)
from .outcome import (
    OperationOutcome,
    not_found_outcome,
    error_outcome,
    gone_outcome,
    outcome_for_exception,
)

__all__ = [
    # Documents / patch
    "parse_json",
    "clone",
    "deep_equal",
    "parse_pointer",
    "resolve_pointer",
    "PatchOp",
    "PatchOperation",
    "parse_json_patch",
    "apply_json_patch",
    "parse_merge_patch",
    "apply_merge_patch",
    "PatchFormat",
    "resolve_patch_format",
    "apply_patch_request",
    # Versioning
    "VersionAction",
    "VersionEntry",
    "HistoryStore",
    "InMemoryHistoryStore",
    "PostgresHistoryStore",
    "VersionTracker",
    # Search
    "SearchParamType",
    "SearchParam",
    "SearchQuery",
    "parse_count",
    "parse_offset",
    # Bundles / outcomes
    "Bundle",
    "SearchBundleParams",
    "new_search_bundle",
    "new_history_bundle",
    "version_headers",
    "location_header",
    "parse_etag",
    "OperationOutcome",
    "not_found_outcome",
    "error_outcome",
    "gone_outcome",
    "outcome_for_exception",
]
