"""
Search Query Builder

Translates FHIR-style search parameters into parameterized PostgreSQL
(asyncpg $N placeholders). Parameter values are only ever bound as
arguments; the SQL text holds nothing but configured identifiers, which are
validated before use.

Usage:
    config = {
        "patient": SearchParam(SearchParamType.REFERENCE, "patient_id"),
        "code": SearchParam(SearchParamType.TOKEN, "code_value", system_column="code_system"),
        "date": SearchParam(SearchParamType.DATE, "effective_date"),
    }
    q = SearchQuery("observations", ["id", "status", "code_value"])
    q.apply_params(request.query_params, config)
    q.order_by("created_at", descending=True)
    total = await conn.fetchval(q.count_sql(), *q.count_args())
    rows = await conn.fetch(q.data_sql(count, offset), *q.data_args(count, offset))
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ehr_platform.core.logging_config import get_logger
from ehr_platform.exceptions import SearchConfigurationError

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class SearchParamType(str, Enum):
    TOKEN = "token"
    STRING = "string"
    REFERENCE = "reference"
    DATE = "date"
    NUMBER = "number"


class SearchPrefix(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GE = "ge"
    LE = "le"
    SA = "sa"
    EB = "eb"
    AP = "ap"


class SearchModifier(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"
    TEXT = "text"
    NOT = "not"
    MISSING = "missing"


_PREFIXES = {p.value for p in SearchPrefix}


def validate_identifier(name: str) -> str:
    """Return name if it is a plain (optionally schema-qualified) SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise SearchConfigurationError(str(name))
    return name


@dataclass(frozen=True)
class SearchParam:
    """How one search parameter maps onto a column."""
    type: SearchParamType
    column: str
    system_column: Optional[str] = None

    def __post_init__(self):
        validate_identifier(self.column)
        if self.system_column is not None:
            validate_identifier(self.system_column)


SearchParamConfig = Dict[str, SearchParam]
QueryParams = Union[Mapping[str, Union[str, Sequence[str]]], Iterable[Tuple[str, str]]]


# ============================================
# Value parsing
# ============================================

def parse_param_modifier(key: str) -> Tuple[str, Optional[str]]:
    """'name:exact' -> ('name', 'exact'); 'name' -> ('name', None)."""
    name, sep, modifier = key.partition(":")
    return name, (modifier if sep else None)


def parse_search_value(raw: str) -> Tuple[SearchPrefix, str]:
    """Split a comparison prefix off a value; prefixes are case-insensitive."""
    if len(raw) > 2 and raw[:2].lower() in _PREFIXES:
        return SearchPrefix(raw[:2].lower()), raw[2:]
    return SearchPrefix.EQ, raw


def _add_months(d: date, months: int) -> date:
    month = d.month - 1 + months
    return date(d.year + month // 12, month % 12 + 1, 1)


def parse_flex_date(value: str) -> Optional[Tuple[datetime, datetime, bool]]:
    """
    Parse YYYY, YYYY-MM, YYYY-MM-DD or an ISO datetime.

    Returns (start, end, is_instant) where end is the exclusive end of the
    period the value names, or None if the value is not a date.
    """
    def at_midnight(d: date) -> datetime:
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)

    try:
        if re.fullmatch(r"\d{4}", value):
            start = date(int(value), 1, 1)
            return at_midnight(start), at_midnight(date(start.year + 1, 1, 1)), False
        if re.fullmatch(r"\d{4}-\d{2}", value):
            start = date(int(value[:4]), int(value[5:7]), 1)
            return at_midnight(start), at_midnight(_add_months(start, 1)), False
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
            start = date.fromisoformat(value)
            return at_midnight(start), at_midnight(start + timedelta(days=1)), False
        if "T" in value:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed, parsed, True
    except ValueError:
        return None
    return None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def reference_id(value: str) -> str:
    """'Patient/123' or 'http://host/fhir/Patient/123' -> '123'."""
    return value.rstrip("/").rsplit("/", 1)[-1]


# ============================================
# Query builder
# ============================================

class SearchQuery:
    """Single-use builder for one search's count and data statements."""

    def __init__(self, table: str, select_columns: Sequence[str]):
        self.table = validate_identifier(table)
        if not select_columns:
            raise SearchConfigurationError("", "select_columns must not be empty")
        self.select_columns = [
            c if c == "*" else validate_identifier(c) for c in select_columns
        ]
        self.where: List[str] = []
        self.args: List[Any] = []
        self.order: List[str] = []

    def _bind(self, value: Any) -> str:
        self.args.append(value)
        return f"${len(self.args)}"

    def add_condition(self, clause: str, *values: Any) -> "SearchQuery":
        """
        Add a raw predicate; '{}' placeholders in clause receive bound values.

        For caller-owned fixed predicates such as "tenant_id = {}".
        """
        self.where.append(clause.format(*(self._bind(v) for v in values)))
        return self

    # ------------------------------------------------------------------
    # Parameter application
    # ------------------------------------------------------------------

    def apply_params(self, params: QueryParams, config: SearchParamConfig) -> "SearchQuery":
        """
        Add one predicate per recognised parameter.

        Repeated parameters are AND-ed; comma-separated values within one
        parameter are OR-ed. Parameters missing from config (and control
        parameters such as _count) are ignored.
        """
        for key, raw in _iter_params(params):
            name, modifier = parse_param_modifier(key)
            param = config.get(name)
            if param is None:
                if not name.startswith("_"):
                    logger.debug("search_param_ignored", param=key)
                continue
            if raw == "":
                continue
            clause = self._clause(param, modifier, raw)
            if clause is not None:
                self.where.append(clause)
        return self

    def _clause(self, param: SearchParam, modifier: Optional[str], raw: str) -> Optional[str]:
        if modifier == SearchModifier.MISSING.value:
            flag = raw.lower()
            if flag == "true":
                return f"{param.column} IS NULL"
            if flag == "false":
                return f"{param.column} IS NOT NULL"
            return None

        builder = _CLAUSE_BUILDERS[param.type]
        clauses = []
        for value in raw.split(","):
            if value == "":
                continue
            clause = builder(self, param, modifier, value)
            if clause is not None:
                clauses.append(clause)
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return "(" + " OR ".join(clauses) + ")"

    def _token(self, param, modifier, value):
        if modifier not in (None, SearchModifier.NOT.value, SearchModifier.EXACT.value):
            return None
        op = "IS DISTINCT FROM" if modifier == SearchModifier.NOT.value else "="

        if "|" in value and value != "|":
            system, _, code = value.partition("|")
            if param.system_column is None:
                return f"{param.column} {op} {self._bind(code)}" if code else None
            if system and code:
                clause = f"({param.system_column} = {self._bind(system)} AND {param.column} = {self._bind(code)})"
                return f"NOT {clause}" if op != "=" else clause
            if code:
                return f"{param.column} {op} {self._bind(code)}"
            return f"{param.system_column} {op} {self._bind(system)}"
        return f"{param.column} {op} {self._bind(value)}"

    def _string(self, param, modifier, value):
        if modifier == SearchModifier.EXACT.value:
            return f"{param.column} = {self._bind(value)}"
        if modifier in (SearchModifier.CONTAINS.value, SearchModifier.TEXT.value):
            return f"{param.column} ILIKE {self._bind('%' + _escape_like(value) + '%')}"
        if modifier is None:
            return f"{param.column} ILIKE {self._bind(_escape_like(value) + '%')}"
        return None

    def _reference(self, param, modifier, value):
        if modifier is not None:
            return None
        return f"{param.column} = {self._bind(reference_id(value))}"

    def _date(self, param, modifier, value):
        if modifier is not None:
            return None
        prefix, bare = parse_search_value(value)
        col = param.column
        parsed = parse_flex_date(bare)
        if parsed is None:
            # unparseable: compare the raw value, prefix letters included
            return f"{col}::text = {self._bind(value)}"
        start, end, instant = parsed

        if prefix == SearchPrefix.EQ:
            if instant:
                return f"{col} = {self._bind(start)}"
            return f"({col} >= {self._bind(start)} AND {col} < {self._bind(end)})"
        if prefix == SearchPrefix.NE:
            if instant:
                return f"{col} != {self._bind(start)}"
            return f"({col} < {self._bind(start)} OR {col} >= {self._bind(end)})"
        if prefix in (SearchPrefix.GT, SearchPrefix.SA):
            return f"{col} > {self._bind(start)}" if instant else f"{col} >= {self._bind(end)}"
        if prefix in (SearchPrefix.LT, SearchPrefix.EB):
            return f"{col} < {self._bind(start)}"
        if prefix == SearchPrefix.GE:
            return f"{col} >= {self._bind(start)}"
        if prefix == SearchPrefix.LE:
            return f"{col} <= {self._bind(start)}" if instant else f"{col} < {self._bind(end)}"
        # ap: one day either side of the named period
        day = timedelta(days=1)
        return f"({col} >= {self._bind(start - day)} AND {col} <= {self._bind(end + day)})"

    def _number(self, param, modifier, value):
        if modifier is not None:
            return None
        prefix, bare = parse_search_value(value)
        col = param.column
        try:
            number = Decimal(bare)
        except InvalidOperation:
            return f"{col}::text = {self._bind(value)}"
        if not number.is_finite():
            return f"{col}::text = {self._bind(value)}"

        if prefix == SearchPrefix.AP:
            margin = abs(number) / 10
            return f"({col} >= {self._bind(number - margin)} AND {col} <= {self._bind(number + margin)})"
        op = {
            SearchPrefix.EQ: "=",
            SearchPrefix.NE: "!=",
            SearchPrefix.GT: ">",
            SearchPrefix.SA: ">",
            SearchPrefix.LT: "<",
            SearchPrefix.EB: "<",
            SearchPrefix.GE: ">=",
            SearchPrefix.LE: "<=",
        }[prefix]
        return f"{col} {op} {self._bind(number)}"

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def order_by(self, column: str, descending: bool = False) -> "SearchQuery":
        """order_by("created_at", descending=True) or order_by("created_at DESC")."""
        parts = column.split()
        if len(parts) == 2 and parts[1].upper() in ("ASC", "DESC"):
            column, descending = parts[0], parts[1].upper() == "DESC"
        self.order.append(f"{validate_identifier(column)} {'DESC' if descending else 'ASC'}")
        return self

    def where_clause(self) -> str:
        if not self.where:
            return ""
        return " WHERE " + " AND ".join(self.where)

    def count_sql(self) -> str:
        return f"SELECT COUNT(*) FROM {self.table}{self.where_clause()}"

    def count_args(self) -> List[Any]:
        return list(self.args)

    def data_sql(self, limit: Optional[int] = None, offset: Optional[int] = None) -> str:
        """Data statement; limit and offset are bound as the last two parameters."""
        n = len(self.args)
        sql = f"SELECT {', '.join(self.select_columns)} FROM {self.table}{self.where_clause()}"
        if self.order:
            sql += " ORDER BY " + ", ".join(self.order)
        return sql + f" LIMIT ${n + 1} OFFSET ${n + 2}"

    def data_args(self, limit: int, offset: int) -> List[Any]:
        return list(self.args) + [limit, offset]


_CLAUSE_BUILDERS = {
    SearchParamType.TOKEN: SearchQuery._token,
    SearchParamType.STRING: SearchQuery._string,
    SearchParamType.REFERENCE: SearchQuery._reference,
    SearchParamType.DATE: SearchQuery._date,
    SearchParamType.NUMBER: SearchQuery._number,
}


def _iter_params(params: QueryParams) -> Iterable[Tuple[str, str]]:
    if hasattr(params, "multi_items"):
        return params.multi_items()
    if isinstance(params, Mapping):
        pairs = []
        for key, value in params.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, v) for v in value)
            else:
                pairs.append((key, value))
        return pairs
    return list(params)


# ============================================
# Paging parameters
# ============================================

def _first(params: QueryParams, key: str) -> Optional[str]:
    for k, v in _iter_params(params):
        if k == key:
            return v
    return None


def parse_count(params: QueryParams, default: int = 20, maximum: int = 100) -> int:
    """_count clamped to [0, maximum]; missing or invalid -> default."""
    raw = _first(params, "_count")
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return default
    if count < 0:
        return default
    return min(count, maximum)


def parse_offset(params: QueryParams) -> int:
    """_offset >= 0; missing or invalid -> 0."""
    raw = _first(params, "_offset")
    try:
        offset = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(offset, 0)
