"""
Orchestration tools package
"""
from advisor.orchestration.tools.lookup import DataLookupOracle, needs_data_lookup
from advisor.orchestration.tools.transport import (
    SqlToolTransport,
    ToolTransport,
    ToolTransportPool,
    execute_tool,
    filter_safe_tools,
    get_tool_pool,
    inventory_query,
    validate_sql_query,
)

__all__ = [
    "DataLookupOracle",
    "SqlToolTransport",
    "ToolTransport",
    "ToolTransportPool",
    "execute_tool",
    "filter_safe_tools",
    "get_tool_pool",
    "inventory_query",
    "needs_data_lookup",
    "validate_sql_query",
]
