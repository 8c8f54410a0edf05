"""Workflow registry for loading and managing the workflow library."""

import logging
import os
from pathlib import Path
from typing import Optional

from .files import build_workflow_file, parse_workflow_file
from .schemas import Difficulty, WorkflowFile, WorkflowNode, WorkflowSummary
from .script_parser import ScriptStructureError, parse_script

logger = logging.getLogger(__name__)

WORKFLOWS_DIR_ENV = "WORKBENCH_WORKFLOWS_DIR"


class WorkflowRegistry:
    """Registry for workflow files.

    Loads ``*.workflow`` files from the definitions directory. The workflow
    key is the file name without its extension.
    """

    def __init__(self, definitions_dir: Optional[Path] = None):
        env_dir = os.environ.get(WORKFLOWS_DIR_ENV)
        self.definitions_dir = definitions_dir or (
            Path(env_dir) if env_dir else Path(__file__).parent / "definitions"
        )
        self._workflows: dict[str, WorkflowFile] = {}
        self._nodes: dict[str, list[WorkflowNode]] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all workflow files from the definitions directory."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            logger.warning(f"Workflow directory not found: {self.definitions_dir}")
            self._loaded = True
            return

        for workflow_path in sorted(self.definitions_dir.glob("*.workflow")):
            try:
                self._add(workflow_path.stem, workflow_path.read_text(encoding="utf-8"))
            except (OSError, ScriptStructureError) as e:
                logger.error(f"Failed to load workflow {workflow_path}: {e}")

        logger.info(f"Loaded {len(self._workflows)} workflows from {self.definitions_dir}")
        self._loaded = True

    def _add(self, workflow_key: str, text: str) -> WorkflowFile:
        workflow = parse_workflow_file(text)
        nodes = parse_script(workflow.body).nodes
        self._workflows[workflow_key] = workflow
        self._nodes[workflow_key] = nodes
        return workflow

    def _summary(self, workflow_key: str) -> WorkflowSummary:
        meta = self._workflows[workflow_key].metadata
        return WorkflowSummary(
            workflow_key=workflow_key,
            name=meta.name,
            category=meta.category,
            difficulty=meta.difficulty,
            tags=meta.tags,
            description=meta.description,
            node_count=len(self._nodes.get(workflow_key, [])),
        )

    def get(self, workflow_key: str) -> Optional[WorkflowFile]:
        """Get a workflow file by key."""
        self.load()
        return self._workflows.get(workflow_key)

    def get_nodes(self, workflow_key: str) -> Optional[list[WorkflowNode]]:
        """Get the parsed node list of a workflow."""
        self.load()
        return self._nodes.get(workflow_key)

    def list_all(self) -> list[WorkflowSummary]:
        """List all workflow summaries."""
        self.load()
        return [self._summary(key) for key in self._workflows]

    def list_by_difficulty(self, difficulty: Difficulty) -> list[WorkflowSummary]:
        """List workflows of one difficulty level."""
        self.load()
        return [
            self._summary(key)
            for key, workflow in self._workflows.items()
            if workflow.metadata.difficulty == difficulty
        ]

    def list_by_category(self, category: str) -> list[WorkflowSummary]:
        """List workflows in a category (case-insensitive)."""
        self.load()
        wanted = category.lower()
        return [
            self._summary(key)
            for key, workflow in self._workflows.items()
            if workflow.metadata.category.lower() == wanted
        ]

    def get_workflow_keys(self) -> list[str]:
        """Get all workflow keys."""
        self.load()
        return list(self._workflows.keys())

    def count(self) -> int:
        """Get total number of workflows."""
        self.load()
        return len(self._workflows)

    def save(self, workflow_key: str, workflow: WorkflowFile) -> bool:
        """Save a workflow file, creating or replacing it.

        The body must parse to at least one node.

        Returns:
            True if save was successful, False otherwise
        """
        self.load()

        text = build_workflow_file(workflow.metadata, workflow.body)
        workflow_path = self.definitions_dir / f"{workflow_key}.workflow"

        try:
            parse_script(workflow.body)
        except ScriptStructureError as e:
            logger.error(f"Refusing to save workflow {workflow_key}: {e}")
            return False

        # The in-memory entry only changes once the file is on disk
        try:
            self.definitions_dir.mkdir(parents=True, exist_ok=True)
            workflow_path.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save workflow {workflow_key}: {e}")
            return False

        self._add(workflow_key, text)
        logger.info(f"Saved workflow: {workflow_key}")
        return True

    def delete(self, workflow_key: str) -> bool:
        """Delete a workflow file and its in-memory entry."""
        self.load()

        if workflow_key not in self._workflows:
            logger.warning(f"Workflow not found for deletion: {workflow_key}")
            return False

        workflow_path = self.definitions_dir / f"{workflow_key}.workflow"
        try:
            if workflow_path.exists():
                workflow_path.unlink()
        except OSError as e:
            logger.error(f"Failed to delete workflow {workflow_key}: {e}")
            return False

        del self._workflows[workflow_key]
        self._nodes.pop(workflow_key, None)
        logger.info(f"Deleted workflow: {workflow_key}")
        return True

    def reload(self) -> None:
        """Force reload all definitions."""
        self._loaded = False
        self._workflows.clear()
        self._nodes.clear()
        self.load()


# Global registry instance
_registry: Optional[WorkflowRegistry] = None


def get_workflow_registry() -> WorkflowRegistry:
    """Get the global workflow registry instance."""
    global _registry
    if _registry is None:
        _registry = WorkflowRegistry()
    return _registry
