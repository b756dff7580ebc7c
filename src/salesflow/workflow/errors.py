"""
salesflow.workflow.errors

Exceptions raised while running a workflow graph.
"""

from __future__ import annotations


class WorkflowStepError(Exception):
    """
    A step handler raised. The service records the failed step execution and
    fails the enrollment.
    """

    def __init__(self, *, step_id: str, error: str) -> None:
        super().__init__(f"Step {step_id} failed: {error}")
        self.step_id = step_id
        self.error = error


# --- Module Notes -----------------------------------------------------------
# Handler *results* with success=False are not errors; only raised exceptions are.
