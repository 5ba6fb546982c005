"""
access_log_pipeline package initializer.

Parses access-log lines into immutable records and answers traffic questions
over them with mergeable, partition-safe aggregations executed on Ray.
"""

__all__ = ["utils", "aggregation", "data_processing", "core_logic", "driver"]
