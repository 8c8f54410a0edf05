"""Workbench API routes: chunking, scripts, runs and exports.

Endpoints:
    POST /v1/workbench/chunks                    Split document content into units
    POST /v1/workbench/scripts/parse             Script text -> nodes + warnings + variables
    POST /v1/workbench/scripts/serialize         Nodes -> script text
    POST /v1/workbench/runs/workflow             Start a workflow run
    POST /v1/workbench/runs/prompt               Start a single-prompt run
    GET  /v1/workbench/runs                      List runs
    GET  /v1/workbench/runs/{run_id}             Poll status + progress
    POST /v1/workbench/runs/{run_id}/cancel      Cancel the running run
    POST /v1/workbench/runs/{run_id}/export      Export run results
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from workbench.chunking.schemas import ChunkParams, ProcessUnit
from workbench.chunking.splitter import ChunkingError, create_units
from workbench.executor.exporter import export_rows, rows_from_chunk_results, rows_from_run
from workbench.executor.run_manager import RunConflictError, get_run_manager
from workbench.executor.schemas import (
    ExportedDocument,
    ExportFormat,
    RunKind,
    RunSettings,
    RunStatus,
    WorkbenchRun,
)
from workbench.executor.template import placeholders
from workbench.workflows.registry import get_workflow_registry
from workbench.workflows.schemas import WorkflowNode
from workbench.workflows.script_parser import ScriptStructureError, parse_script
from workbench.workflows.script_writer import available_variables, serialize_nodes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workbench", tags=["workbench"])


# --- Request / response models ---


class ChunkRequest(BaseModel):
    content: str = Field(..., description="Document content (text or delimited table)")
    params: ChunkParams = Field(default_factory=ChunkParams)


class ChunkResponse(BaseModel):
    units: list[ProcessUnit]
    count: int
    is_table: bool


class ParseRequest(BaseModel):
    script: str = Field(..., description="Workflow script text")


class NodeVariables(BaseModel):
    """Editor hints for one node."""
    node_id: str
    available: list[str] = Field(description="Context keys the node may reference")
    referenced: list[str] = Field(description="Placeholders its templates use")


class ParseResponse(BaseModel):
    nodes: list[WorkflowNode]
    warnings: list[str]
    variables: list[NodeVariables]


class SerializeRequest(BaseModel):
    nodes: list[WorkflowNode]


class WorkflowRunRequest(BaseModel):
    """Start a workflow run from a script or a saved workflow."""
    content: str = Field(..., description="Document content to chunk")
    script: Optional[str] = Field(default=None, description="Workflow script text")
    workflow_key: Optional[str] = Field(
        default=None,
        description="Saved workflow to run when no script is given",
    )
    chunk_params: ChunkParams = Field(default_factory=ChunkParams)
    settings: RunSettings = Field(default_factory=RunSettings)
    unit_limit: int = Field(default=0, ge=0, description="Process only the first N units (0 = all)")


class PromptRunRequest(BaseModel):
    content: str = Field(..., description="Document content to chunk")
    prompt: str = Field(..., min_length=1)
    include_chunk: bool = True
    chunk_params: ChunkParams = Field(default_factory=ChunkParams)
    settings: RunSettings = Field(default_factory=RunSettings)


class ExportRequest(BaseModel):
    format: ExportFormat = ExportFormat.COMBINED
    include_headers: bool = True
    response_key: Optional[str] = Field(
        default=None,
        description="Context key used as the response of workflow units",
    )
    title_prefix: str = "AI Results"
    delimiter: str = ","


class ExportResponse(BaseModel):
    format: ExportFormat
    content: Optional[str] = None
    documents: list[ExportedDocument] = Field(default_factory=list)


# --- Helpers ---


def _units_for(content: str, params: ChunkParams) -> list[ProcessUnit]:
    try:
        return create_units(content, params)
    except ChunkingError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _parse(script: str):
    try:
        return parse_script(script)
    except ScriptStructureError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _node_templates(node: WorkflowNode) -> str:
    return "\n".join(
        t for t in (node.prompt_template, node.system_template, node.message_template) if t
    )


def _get_run_or_404(run_id: str) -> WorkbenchRun:
    run = get_run_manager().get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


# --- Chunking and scripts ---


@router.post("/chunks", response_model=ChunkResponse)
async def chunk_content(request: ChunkRequest) -> ChunkResponse:
    """Split content into process units with the given parameters."""
    units = _units_for(request.content, request.params)
    return ChunkResponse(
        units=units,
        count=len(units),
        is_table=any(unit.row is not None for unit in units),
    )


@router.post("/scripts/parse", response_model=ParseResponse)
async def parse_workflow_script(request: ParseRequest) -> ParseResponse:
    """Parse a script into nodes, with authoring warnings and variable hints."""
    parsed = _parse(request.script)
    variables = [
        NodeVariables(
            node_id=node.id,
            available=available_variables(parsed.nodes, position),
            referenced=placeholders(_node_templates(node)),
        )
        for position, node in enumerate(parsed.nodes)
    ]
    return ParseResponse(nodes=parsed.nodes, warnings=parsed.warnings, variables=variables)


@router.post("/scripts/serialize")
async def serialize_workflow_script(request: SerializeRequest) -> dict[str, str]:
    """Serialize a node list back to script text."""
    return {"script": serialize_nodes(request.nodes)}


# --- Runs ---


@router.post("/runs/workflow", response_model=WorkbenchRun)
async def start_workflow_run(request: WorkflowRunRequest) -> WorkbenchRun:
    """Start executing a workflow in the background.

    Returns the run for polling. Only one run may be active at a time.
    """
    if request.script is not None:
        parsed = _parse(request.script)
        nodes, warnings = parsed.nodes, parsed.warnings
    elif request.workflow_key:
        saved = get_workflow_registry().get_nodes(request.workflow_key)
        if saved is None:
            raise HTTPException(
                status_code=404,
                detail=f"Workflow not found: {request.workflow_key}",
            )
        nodes, warnings = saved, []
    else:
        raise HTTPException(status_code=400, detail="Provide a script or a workflow_key")

    units = _units_for(request.content, request.chunk_params)
    try:
        run = get_run_manager().start_workflow_run(
            nodes,
            units,
            settings=request.settings,
            unit_limit=request.unit_limit,
            warnings=warnings,
        )
    except RunConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Started workflow run {run.run_id}: {len(nodes)} nodes, {len(units)} units")
    return run


@router.post("/runs/prompt", response_model=WorkbenchRun)
async def start_prompt_run(request: PromptRunRequest) -> WorkbenchRun:
    """Start single-prompt mode in the background."""
    units = _units_for(request.content, request.chunk_params)
    try:
        run = get_run_manager().start_prompt_run(
            units,
            request.prompt,
            settings=request.settings,
            include_chunk=request.include_chunk,
        )
    except RunConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Started prompt run {run.run_id} over {len(units)} units")
    return run


@router.get("/runs")
async def list_runs(status: Optional[RunStatus] = None) -> dict:
    """List known runs, newest first."""
    runs = get_run_manager().list_runs()
    if status is not None:
        runs = [run for run in runs if run.status == status]
    return {
        "runs": [
            {
                "run_id": run.run_id,
                "kind": run.kind,
                "status": run.status,
                "progress": run.progress,
                "created_at": run.created_at,
                "completed_at": run.completed_at,
            }
            for run in runs
        ],
        "count": len(runs),
    }


@router.get("/runs/{run_id}", response_model=WorkbenchRun)
async def get_run_status(run_id: str) -> WorkbenchRun:
    """Get run status, progress, logs and results.

    This is the polling endpoint for the frontend.
    """
    return _get_run_or_404(run_id)


@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str) -> dict:
    """Cancel a pending or running run."""
    run = _get_run_or_404(run_id)
    if not get_run_manager().cancel(run_id):
        raise HTTPException(
            status_code=400,
            detail=f"Run {run_id} is not active (status: {run.status.value})",
        )
    return {"run_id": run_id, "cancelled": True}


@router.post("/runs/{run_id}/export", response_model=ExportResponse)
async def export_run(run_id: str, request: ExportRequest) -> ExportResponse:
    """Render a finished run's results in one of the export formats."""
    run = _get_run_or_404(run_id)
    if run.status in (RunStatus.PENDING, RunStatus.RUNNING):
        raise HTTPException(status_code=409, detail=f"Run {run_id} is still {run.status.value}")

    if run.kind == RunKind.PROMPT:
        rows = rows_from_chunk_results(run.chunk_results)
    elif run.result is not None:
        rows = rows_from_run(run.result, run.units, request.response_key)
    else:
        raise HTTPException(status_code=400, detail=f"Run {run_id} has no results to export")

    exported: Union[str, list[ExportedDocument]] = export_rows(
        rows,
        request.format,
        include_headers=request.include_headers,
        title_prefix=request.title_prefix,
        delimiter=request.delimiter,
    )
    if isinstance(exported, str):
        return ExportResponse(format=request.format, content=exported)
    return ExportResponse(format=request.format, documents=exported)
