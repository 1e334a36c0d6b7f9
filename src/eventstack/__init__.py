"""
EventStack - HTTP request lifecycle logger → Elasticsearch

A FastAPI-based event collector that correlates request lifecycle events
into composite records, filters them against a declarative policy, and
ships the survivors to Elasticsearch in throttled bulk writes.
"""

__version__ = "0.1.0"
