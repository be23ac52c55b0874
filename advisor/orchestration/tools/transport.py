"""
Tool Transport for read-only data access

A transport exposes named tools (list_tables, execute_sql, ...) to the turn
service. Calls are validated before dispatch: destructive tools are filtered
out and every SQL statement must be read-only and scoped to the caller's
identity when it touches user data.
"""
import asyncio
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from advisor.core.config import settings
from advisor.core.exceptions import ConfigurationError, ToolQueryRejected
from advisor.core.logging import logger


SAFE_TOOL_PATTERNS = (
    re.compile(r"^list_"),
    re.compile(r"^get_"),
    re.compile(r"^search_"),
    re.compile(r"^execute_sql$"),
)

BLOCKED_TOOL_PATTERNS = (
    re.compile(r"^delete_"),
    re.compile(r"^drop_"),
    re.compile(r"^truncate_"),
    re.compile(r"^create_project$"),
    re.compile(r"^pause_project$"),
    re.compile(r"^restore_project$"),
    re.compile(r"^apply_migration$"),
    re.compile(r"^deploy_edge_function$"),
)

DDL_PATTERNS = (
    re.compile(r"\bdrop\b"),
    re.compile(r"\bcreate\b"),
    re.compile(r"\balter\b"),
    re.compile(r"\btruncate\b"),
    re.compile(r"\bgrant\b"),
    re.compile(r"\brevoke\b"),
)

WRITE_PATTERNS = (
    re.compile(r"\binsert\s+into\b"),
    re.compile(r"\bupdate\s+\w+\s+set\b"),
    re.compile(r"\bdelete\s+from\b"),
)

INJECTION_PATTERNS = (
    re.compile(r";\s*--"),
    re.compile(r"'\s*or\s+'?1'?\s*=\s*'?1"),
    re.compile(r"\bunion\s+select\b"),
    re.compile(r"\binto\s+outfile\b"),
)

IDENTITY_SCOPED_TABLES = re.compile(
    r"\b(from|join)\s+(\w+\.)?(policies|chat_sessions|conversations|documents|claims|users|user_documents)\b"
)

IDENTITY_RE = re.compile(r"^[A-Za-z0-9_.@:\-]{1,128}$")

STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")

COMPARISON_OPERATORS = r"(?P<op>!=|<>|<=|>=|=|<|>|not\s+like\b|like\b|not\s+in\b|in\b|is\b|between\b)"

# column on the left: user_id = 'x'
IDENTITY_COMPARISON_RE = re.compile(
    r"(?:\b\w+\.)?\b(?:user_id|external_id)\b\s*" + COMPARISON_OPERATORS + r"\s*(?P<value>'(?:[^']|'')*'|\S+)"
)

# column on the right: 'x' = user_id
REVERSED_IDENTITY_COMPARISON_RE = re.compile(
    r"(?P<value>'(?:[^']|'')*'|[\w.]+)\s*(?P<op>!=|<>|<=|>=|=|<|>)\s*(?:\w+\.)?(?:user_id|external_id)\b"
)

DISJUNCTION_RE = re.compile(r"\bor\b|\|\|")
NEGATED_IDENTITY_RE = re.compile(r"\bnot\s*\(?\s*(?:\w+\.)?(?:user_id|external_id)\b")
STATEMENT_SEPARATOR_RE = re.compile(r";\s*\S")


def filter_safe_tools(tool_names: Sequence[str]) -> List[str]:
    """Keep read-focused tools; drop destructive and unrecognized ones."""
    kept = []
    for name in tool_names:
        lowered = name.lower()
        if any(p.search(lowered) for p in BLOCKED_TOOL_PATTERNS):
            logger.info(f"[TOOLS] Blocked tool: {name}")
            continue
        if any(p.search(lowered) for p in SAFE_TOOL_PATTERNS):
            kept.append(name)
            continue
        logger.info(f"[TOOLS] Filtered unrecognized tool: {name}")
    return kept


def validate_identity(identity: str) -> str:
    if not identity or not IDENTITY_RE.match(identity):
        raise ToolQueryRejected("Identity is not usable as a query filter")
    return identity


def _identity_comparisons(lowered: str):
    """(operator, value) for each user_id/external_id comparison outside string literals."""
    literals = [m.span() for m in STRING_LITERAL_RE.finditer(lowered)]
    for pattern in (IDENTITY_COMPARISON_RE, REVERSED_IDENTITY_COMPARISON_RE):
        for match in pattern.finditer(lowered):
            if any(start < match.start() < end for start, end in literals):
                continue
            yield re.sub(r"\s+", " ", match.group("op")), match.group("value")


def validate_sql_query(query: str, identity: str) -> None:
    """
    Validate a SQL statement before it reaches the transport.

    A query touching identity-scoped tables must compare every user_id or
    external_id column to the caller's identity with plain equality, and
    may not contain OR or a negated identity filter.

    Raises:
        ToolQueryRejected: On DDL, writes, stacked statements, injection
            patterns, or a query on identity-scoped tables without an exact
            identity filter
    """
    lowered = (query or "").lower().strip()
    if not lowered:
        raise ToolQueryRejected("Empty query")

    unquoted = STRING_LITERAL_RE.sub("''", lowered)

    if any(p.search(unquoted) for p in DDL_PATTERNS):
        raise ToolQueryRejected("DDL statements are not permitted")

    if any(p.search(unquoted) for p in WRITE_PATTERNS):
        raise ToolQueryRejected("Write statements are not permitted")

    if STATEMENT_SEPARATOR_RE.search(unquoted):
        raise ToolQueryRejected("Only one statement per call is permitted")

    if IDENTITY_SCOPED_TABLES.search(unquoted):
        expected = f"'{validate_identity(identity).lower()}'"
        if DISJUNCTION_RE.search(unquoted):
            raise ToolQueryRejected("Queries on user data may not use OR")
        if NEGATED_IDENTITY_RE.search(unquoted):
            raise ToolQueryRejected("Queries on user data may not negate the identity filter")
        comparisons = list(_identity_comparisons(lowered))
        if not comparisons:
            raise ToolQueryRejected("Queries on user data must include the identity filter")
        for op, value in comparisons:
            if op != "=" or value != expected:
                raise ToolQueryRejected("Identity filter must match the caller's identity exactly")

    if any(p.search(lowered) for p in INJECTION_PATTERNS):
        raise ToolQueryRejected("Query contains suspicious patterns")


class ToolTransport(ABC):
    """A connection that can list and execute tools."""

    @abstractmethod
    async def list_tools(self) -> List[str]:
        pass

    @abstractmethod
    async def execute(self, tool_name: str, args: Dict[str, Any]) -> Any:
        pass

    async def close(self) -> None:
        pass


class SqlToolTransport(ToolTransport):
    """Read-only SQL tools over a SQLAlchemy engine."""

    TOOLS = ("list_tables", "execute_sql")

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            url = database_url or settings.TOOL_DATABASE_URL
            if not url:
                raise ConfigurationError("TOOL_DATABASE_URL is not set")
            engine = create_engine(url, pool_pre_ping=True)
        self.engine = engine

    async def list_tools(self) -> List[str]:
        return list(self.TOOLS)

    async def execute(self, tool_name: str, args: Dict[str, Any]) -> Any:
        if tool_name == "list_tables":
            return await asyncio.to_thread(self._list_tables)
        if tool_name == "execute_sql":
            return await asyncio.to_thread(self._execute_sql, args["query"])
        raise ToolQueryRejected(f"Unknown tool: {tool_name}")

    def _list_tables(self) -> List[str]:
        return inspect(self.engine).get_table_names()

    def _execute_sql(self, query: str) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            result = conn.execute(text(query))
            rows = [dict(row._mapping) for row in result]
            conn.rollback()
        return rows

    async def close(self) -> None:
        self.engine.dispose()


TransportFactory = Callable[[], Union[ToolTransport, Awaitable[ToolTransport]]]


class ToolTransportPool:
    """
    Lends one shared transport to at most one borrower at a time.

    The transport is created lazily on first borrow and reused afterwards.
    """

    def __init__(self, factory: TransportFactory, acquire_timeout: float = 30.0):
        self._factory = factory
        self._transport: Optional[ToolTransport] = None
        self._lock = asyncio.Lock()
        self.acquire_timeout = acquire_timeout

    @property
    def in_use(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def borrow(self):
        await asyncio.wait_for(self._lock.acquire(), timeout=self.acquire_timeout)
        try:
            if self._transport is None:
                created = self._factory()
                if asyncio.iscoroutine(created):
                    created = await created
                self._transport = created
                logger.info("[TOOLS] Transport created")
            yield self._transport
        finally:
            self._lock.release()

    async def close(self) -> None:
        async with self._lock:
            if self._transport is not None:
                await self._transport.close()
                self._transport = None
                logger.info("[TOOLS] Transport closed")


async def execute_tool(
    transport: ToolTransport,
    identity: str,
    tool_name: str,
    args: Dict[str, Any],
) -> Any:
    """Validate and dispatch one tool call. Every call is logged."""
    if tool_name not in filter_safe_tools([tool_name]):
        raise ToolQueryRejected(f"Tool not permitted: {tool_name}")
    if tool_name == "execute_sql":
        validate_sql_query(args.get("query", ""), identity)

    logger.info(f"[TOOLS] Executing tool: {tool_name}")
    result = await transport.execute(tool_name, args)
    logger.debug(f"[TOOLS] Tool result received ({len(str(result))} chars)")
    return result


def inventory_query(identity: str) -> str:
    """Active policy documents on file for an identity, newest first."""
    identity = validate_identity(identity)
    return (
        "SELECT policy_type, carrier_name, uploaded_at FROM user_documents "
        f"WHERE user_id = '{identity}' AND status = 'active' "
        "ORDER BY uploaded_at DESC"
    )


# Singleton pool
_tool_pool: Optional[ToolTransportPool] = None


def get_tool_pool() -> Optional[ToolTransportPool]:
    """Pool over the configured database, or None when no database is configured."""
    global _tool_pool
    if not settings.TOOL_DATABASE_URL:
        return None
    if _tool_pool is None:
        _tool_pool = ToolTransportPool(lambda: SqlToolTransport(settings.TOOL_DATABASE_URL))
    return _tool_pool
