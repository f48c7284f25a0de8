"""
sources: one adapter per kind of tabular source.

Each adapter knows how to list what can be imported, fetch a column list
and the raw records for one table, and describe itself for ``source_info``.
The import orchestrator drives them uniformly.
"""
