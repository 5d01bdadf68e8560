"""
PostgreSQL schema for the resource version log.

Tables:
- resource_history: append-only log, one row per (resource_type, resource_id, version_id)
"""

# ============================================================
# 1. 버전 이력 테이블
# ============================================================

DDL_RESOURCE_HISTORY = """
CREATE TABLE IF NOT EXISTS resource_history (
    id              BIGSERIAL PRIMARY KEY,
    resource_type   VARCHAR(64) NOT NULL,
    resource_id     VARCHAR(64) NOT NULL,
    version_id      INTEGER NOT NULL CHECK (version_id >= 1),
    resource        JSONB,
    action          VARCHAR(10) NOT NULL CHECK (action IN ('create', 'update', 'delete')),
    timestamp       TIMESTAMPTZ NOT NULL DEFAULT NOW(),

    CONSTRAINT uq_resource_history_version UNIQUE (resource_type, resource_id, version_id)
);

COMMENT ON TABLE resource_history IS 'Append-only resource version log';
"""

DDL_RESOURCE_HISTORY_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_resource_history_type_ts
    ON resource_history (resource_type, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_resource_history_ts
    ON resource_history (timestamp DESC);
"""


ALL_DDL = [
    DDL_RESOURCE_HISTORY,
    DDL_RESOURCE_HISTORY_INDEXES,
]
