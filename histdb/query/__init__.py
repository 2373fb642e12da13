"""
histdb Query - Filtering and searching history.
"""

from histdb.query.engine import QueryEngine, QueryResult, QueryStats
from histdb.query.filters import DEFAULT_LIMIT, QueryFilter, command_matches

__all__ = [
    "DEFAULT_LIMIT",
    "QueryEngine",
    "QueryFilter",
    "QueryResult",
    "QueryStats",
    "command_matches",
]
