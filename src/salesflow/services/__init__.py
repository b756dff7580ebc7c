"""
salesflow.services

Service-layer package.

Responsibilities:
- Own transaction boundaries and persistence decisions.
- Coordinate repositories, action handlers, the workflow engine and gateway clients.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services take their session, settings and HTTP client as constructor arguments so
# tests and the job runner can build them outside a request.
