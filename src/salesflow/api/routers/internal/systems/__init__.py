"""
salesflow.api.routers.internal.systems

Dummy external-system implementations.

Responsibilities:
- Provide the internal payment gateway endpoints (intents: create, retrieve, confirm).
- Simulate the card gateway while remaining fully local/runnable.
"""

# Package marker.
