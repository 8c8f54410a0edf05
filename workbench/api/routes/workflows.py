"""Workflow library API routes.

Provides CRUD operations for saved workflow files.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from workbench.workflows.registry import get_workflow_registry
from workbench.workflows.schemas import (
    Difficulty,
    WorkflowFile,
    WorkflowNode,
    WorkflowSummary,
)
from workbench.workflows.script_parser import ScriptStructureError, parse_script

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.get("", response_model=list[WorkflowSummary])
async def list_workflows(
    difficulty: Optional[Difficulty] = Query(None, description="Filter by difficulty"),
    category: Optional[str] = Query(None, description="Filter by category"),
) -> list[WorkflowSummary]:
    """List all workflows with optional filtering."""
    registry = get_workflow_registry()

    if difficulty:
        summaries = registry.list_by_difficulty(difficulty)
    else:
        summaries = registry.list_all()
    if category:
        summaries = [s for s in summaries if s.category.lower() == category.lower()]
    return summaries


@router.get("/keys", response_model=list[str])
async def list_workflow_keys() -> list[str]:
    """List all workflow keys."""
    return get_workflow_registry().get_workflow_keys()


@router.get("/count")
async def get_workflow_count() -> dict[str, int]:
    """Get total number of workflows."""
    return {"count": get_workflow_registry().count()}


@router.get("/category/{category}", response_model=list[WorkflowSummary])
async def list_workflows_by_category(category: str) -> list[WorkflowSummary]:
    """List workflows in a specific category."""
    return get_workflow_registry().list_by_category(category)


@router.get("/{workflow_key}", response_model=WorkflowFile)
async def get_workflow(workflow_key: str) -> WorkflowFile:
    """Get a workflow's metadata and script body."""
    workflow = get_workflow_registry().get(workflow_key)
    if workflow is None:
        raise HTTPException(
            status_code=404,
            detail=f"Workflow not found: {workflow_key}",
        )
    return workflow


@router.get("/{workflow_key}/nodes", response_model=list[WorkflowNode])
async def get_workflow_nodes(workflow_key: str) -> list[WorkflowNode]:
    """Get the parsed node list of a workflow."""
    nodes = get_workflow_registry().get_nodes(workflow_key)
    if nodes is None:
        raise HTTPException(
            status_code=404,
            detail=f"Workflow not found: {workflow_key}",
        )
    return nodes


@router.put("/{workflow_key}", response_model=WorkflowSummary)
async def save_workflow(workflow_key: str, workflow: WorkflowFile) -> WorkflowSummary:
    """Create or replace a workflow."""
    try:
        parse_script(workflow.body)
    except ScriptStructureError as e:
        raise HTTPException(status_code=400, detail=str(e))

    registry = get_workflow_registry()
    if not registry.save(workflow_key, workflow):
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save workflow: {workflow_key}",
        )

    for summary in registry.list_all():
        if summary.workflow_key == workflow_key:
            return summary
    raise HTTPException(status_code=500, detail=f"Saved workflow not found: {workflow_key}")


@router.delete("/{workflow_key}")
async def delete_workflow(workflow_key: str) -> dict:
    """Delete a workflow."""
    registry = get_workflow_registry()
    if registry.get(workflow_key) is None:
        raise HTTPException(
            status_code=404,
            detail=f"Workflow not found: {workflow_key}",
        )
    if not registry.delete(workflow_key):
        raise HTTPException(
            status_code=500,
            detail=f"Failed to delete workflow: {workflow_key}",
        )
    return {"workflow_key": workflow_key, "deleted": True}
