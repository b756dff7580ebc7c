"""
salesflow.api.routers.merge_tags

Merge-tag catalogue for message editors.

Responsibilities:
- List the variables available for a trigger (or all of them).
- Preview a template with example values and validate its tags for a trigger.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from salesflow.api.deps import settings_dep
from salesflow.auth.deps import require_roles
from salesflow.mergetags.engine import MergeTagEngine
from salesflow.mergetags.registry import VariableRegistry, trigger_group
from salesflow.settings import Settings

router = APIRouter(
    prefix="/api/v1/merge-tags",
    tags=["merge-tags"],
    dependencies=[Depends(require_roles("marketer", "sales"))],
)


class PreviewRequest(BaseModel):
    text: str = Field(max_length=65_535)
    # Optional live context; without it tags render with the catalogue's examples.
    context: dict[str, Any] | None = None


class ValidateRequest(BaseModel):
    text: str = Field(max_length=65_535)
    trigger_type: str = "purchase_completed"


@router.get("/variables")
async def list_variables(trigger: str | None = Query(default=None)) -> dict[str, Any]:
    if not trigger:
        return {"trigger_type": None, "categories": VariableRegistry.all_variables()}
    return {
        "trigger_type": trigger,
        "trigger_group": trigger_group(trigger),
        "categories": VariableRegistry.variables_for_trigger(trigger),
    }


@router.post("/preview")
async def preview(body: PreviewRequest, settings: Settings = Depends(settings_dep)) -> dict[str, Any]:
    if body.context is not None:
        rendered = MergeTagEngine(settings, body.context).resolve(body.text)
    else:
        rendered = MergeTagEngine.preview(body.text)
    return {"preview": rendered, "variables": MergeTagEngine.extract_variables(body.text)}


@router.post("/validate")
async def validate(body: ValidateRequest, settings: Settings = Depends(settings_dep)) -> dict[str, Any]:
    errors = MergeTagEngine(settings).validate_for_trigger(body.text, body.trigger_type)
    return {
        "valid": not errors,
        "errors": errors,
        "variables": MergeTagEngine.extract_variables(body.text),
    }
