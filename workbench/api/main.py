"""AI Workbench API.

Serves the workbench execution engine over HTTP:
- Chunking of documents into process units
- Workflow script parsing and serialization
- Background workflow and single-prompt runs with progress polling
- Export of run results
- The saved workflow library
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workbench import __version__
from workbench.api.routes import workbench, workflows
from workbench.executor.run_manager import get_run_manager
from workbench.workflows.registry import get_workflow_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Pre-load the workflow library
    logger.info("Loading workflow definitions...")
    workflow_registry = get_workflow_registry()
    logger.info(f"Loaded {workflow_registry.count()} workflows")

    logger.info("AI Workbench API ready")
    yield
    # Shutdown
    active = get_run_manager().active_run()
    if active is not None:
        logger.info(f"Cancelling active run {active.run_id} on shutdown")
        get_run_manager().cancel(active.run_id)
    logger.info("Shutting down AI Workbench API")


# Create FastAPI app
app = FastAPI(
    title="AI Workbench API",
    description="""
## Workflow Execution Engine

Cuts documents into process units and pushes each unit through a workflow
of func, prompt and print nodes, or through a single prompt.

### Key Endpoints

- `POST /v1/workbench/chunks` - Split content into units
- `POST /v1/workbench/scripts/parse` - Parse a workflow script
- `POST /v1/workbench/runs/workflow` - Start a workflow run
- `GET /v1/workbench/runs/{run_id}` - Poll a run
- `POST /v1/workbench/runs/{run_id}/export` - Export results
- `GET /v1/workflows` - List saved workflows
""",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /v1 prefix
app.include_router(workbench.router, prefix="/v1")
app.include_router(workflows.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "AI Workbench API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "workbench": "/v1/workbench",
            "workflows": "/v1/workflows",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    active = get_run_manager().active_run()
    return {
        "status": "healthy",
        "workflows_loaded": get_workflow_registry().count(),
        "active_run": active.run_id if active else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workbench.api.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True,
    )
