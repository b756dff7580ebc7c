"""
salesflow.api.routers.internal

Internal system API package.

Responsibilities:
- Host the in-process payment gateway under `/internal/v1/*`.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# In production a hosted gateway replaces these endpoints (`payment_gateway_base_url`).
