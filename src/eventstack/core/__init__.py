"""
Core business logic components.

This package contains the event processing components:
- Key path extraction and policy matching
- Policy evaluation (admission and exclusion)
- Request correlation aggregator
- Buffered flush scheduler
- Elasticsearch bulk sink
- Metrics collection
"""
