"""
salesflow.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request context propagation (request id, tenant) for log enrichment.
"""

# Package marker.
