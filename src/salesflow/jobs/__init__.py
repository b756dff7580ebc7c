"""
salesflow.jobs

Periodic background tasks.

Responsibilities:
- Abandoned-cart detection.
- Delayed automation actions whose `scheduled_at` has passed.
- Workflow enrollments waiting on a delay.
"""

# Package marker.
