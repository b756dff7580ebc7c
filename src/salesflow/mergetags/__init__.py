"""
salesflow.mergetags

`{{category.field}}` placeholder resolution for messages.
"""

from __future__ import annotations

from salesflow.mergetags.context import to_jsonable
from salesflow.mergetags.engine import MergeTagEngine
from salesflow.mergetags.registry import VariableRegistry, triggers_match

__all__ = ["MergeTagEngine", "VariableRegistry", "to_jsonable", "triggers_match"]
