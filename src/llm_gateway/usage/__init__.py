"""
Usage accounting — per-exchange token and cost records.
"""

from llm_gateway.usage.records import UsageRecord, estimate_cost
from llm_gateway.usage.sink import InMemoryUsageSink, SQLiteUsageSink, UsageSink

__all__ = [
    "UsageRecord",
    "estimate_cost",
    "UsageSink",
    "InMemoryUsageSink",
    "SQLiteUsageSink",
]
