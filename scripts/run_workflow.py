#!/usr/bin/env python3
"""Run a workflow (or a single prompt) over a document from the command line.

Usage:
    # Workflow script or .workflow file over a CSV, one unit per row
    python scripts/run_workflow.py data.csv --workflow workbench/workflows/definitions/keyword-filter.workflow

    # Saved workflow from the library, first 3 units only
    python scripts/run_workflow.py notes.txt --workflow-key row-summarizer --limit 3

    # Single-prompt mode, paragraph chunks, CSV export
    python scripts/run_workflow.py essay.md --prompt "Summarize in one line:" \
        --chunk-mode blank-line --export csv --output results.csv

    # Prompt from a .prompt file (model settings come from its front matter)
    python scripts/run_workflow.py essay.md --prompt-file summarize.prompt
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from workbench.chunking.schemas import ChunkMode, ChunkParams  # noqa: E402
from workbench.chunking.splitter import ChunkingError, create_units  # noqa: E402
from workbench.executor.exporter import (  # noqa: E402
    export_rows,
    rows_from_chunk_results,
    rows_from_run,
)
from workbench.executor.prompt_runner import run_prompt  # noqa: E402
from workbench.executor.schemas import ExportFormat, RunSettings, UsageTotals  # noqa: E402
from workbench.executor.workflow_runner import execute_script  # noqa: E402
from workbench.llm.factory import ModelRoutingProvider  # noqa: E402
from workbench.workflows.files import parse_prompt_file, parse_workflow_file  # noqa: E402
from workbench.workflows.registry import get_workflow_registry  # noqa: E402
from workbench.workflows.script_writer import serialize_nodes  # noqa: E402


def load_script(args: argparse.Namespace) -> str:
    """Script text from --workflow (script or .workflow file) or --workflow-key."""
    if args.workflow_key:
        nodes = get_workflow_registry().get_nodes(args.workflow_key)
        if nodes is None:
            raise SystemExit(f"Workflow not found: {args.workflow_key}")
        return serialize_nodes(nodes)

    text = Path(args.workflow).read_text(encoding="utf-8")
    if args.workflow.endswith(".workflow"):
        return parse_workflow_file(text).body
    return text


def build_settings(args: argparse.Namespace) -> RunSettings:
    overrides = {}
    if args.model:
        overrides["model"] = args.model
    if args.temperature is not None:
        overrides["temperature"] = args.temperature
    if args.max_tokens is not None:
        overrides["max_tokens"] = args.max_tokens
    if args.system_prompt:
        overrides["system_prompt"] = args.system_prompt
    return RunSettings(**overrides)


def write_export(exported, output: Optional[str]) -> None:
    if isinstance(exported, str):
        if output:
            Path(output).write_text(exported, encoding="utf-8")
            print(f"Wrote {output}")
        else:
            print(exported)
        return

    for document in exported:
        if output:
            out_dir = Path(output)
            out_dir.mkdir(parents=True, exist_ok=True)
            path = out_dir / f"{document.title}.md"
            path.write_text(document.content, encoding="utf-8")
            print(f"Wrote {path}")
        else:
            print(f"# {document.title}\n\n{document.content}\n")


async def run(args: argparse.Namespace) -> int:
    content = Path(args.document).read_text(encoding="utf-8")
    params = ChunkParams(
        mode=ChunkMode(args.chunk_mode),
        word_count=args.word_count,
        character_count=args.character_count,
        separator=args.separator,
        row_limit=args.row_limit,
        auto_detect_table=not args.no_table_detection,
    )
    try:
        units = create_units(content, params)
    except ChunkingError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    settings = build_settings(args)
    provider = ModelRoutingProvider()
    print(f"Units: {len(units)}  Model: {settings.model}")
    print("=" * 50)

    if args.prompt or args.prompt_file:
        prompt = args.prompt
        if args.prompt_file:
            prompt_file = parse_prompt_file(Path(args.prompt_file).read_text(encoding="utf-8"))
            prompt = prompt_file.body
            settings = settings.model_copy(update={
                k: v
                for k, v in (
                    ("model", prompt_file.model),
                    ("temperature", prompt_file.temperature),
                    ("max_tokens", prompt_file.max_tokens),
                )
                if v is not None
            })
        if args.limit:
            units = units[:args.limit]
        usage = UsageTotals()
        results = await run_prompt(
            units, prompt, provider,
            settings=settings,
            include_chunk=not args.no_chunk,
            usage=usage,
        )
        rows = rows_from_chunk_results(results)
        failed = sum(1 for r in results if r.error)
    else:
        result = await execute_script(
            load_script(args), units, provider,
            settings=settings,
            unit_limit=args.limit,
        )
        if result.error:
            print(f"ERROR: {result.error}", file=sys.stderr)
            return 2
        for line in result.log_lines():
            print(line)
        print("=" * 50)
        usage = result.usage
        rows = rows_from_run(result, units, args.response_key)
        failed = sum(1 for o in result.outcomes if o.status.value == "failed")

    print(
        f"Calls: {usage.calls}  Input tokens: {usage.input_tokens}  "
        f"Output tokens: {usage.output_tokens}"
    )

    if args.export:
        exported = export_rows(
            rows,
            ExportFormat(args.export),
            include_headers=not args.no_headers,
        )
        write_export(exported, args.output)

    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(
        description="Run a workflow or a single prompt over a document",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("document", help="Document to process (text or delimited table)")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--workflow", help="Workflow script or .workflow file")
    source.add_argument("--workflow-key", help="Saved workflow from the library")
    source.add_argument("--prompt", help="Single prompt applied to every unit")
    source.add_argument("--prompt-file", help=".prompt file for single-prompt mode")

    parser.add_argument(
        "--chunk-mode",
        choices=[m.value for m in ChunkMode],
        default=ChunkMode.NEWLINE.value,
        help="How to split the document (default: newline)",
    )
    parser.add_argument("--word-count", type=int, default=100, help="Words per unit (word-count mode)")
    parser.add_argument("--character-count", type=int, default=500, help="Characters per unit")
    parser.add_argument("--separator", default="", help="Separator (custom-separator mode)")
    parser.add_argument("--row-limit", type=int, default=0, help="Max table rows (0 = all)")
    parser.add_argument(
        "--no-table-detection",
        action="store_true",
        help="Do not switch to table mode for delimited content",
    )
    parser.add_argument("--limit", type=int, default=0, help="Process only the first N units")

    parser.add_argument("--model", help="Default model")
    parser.add_argument("--temperature", type=float, help="Default temperature")
    parser.add_argument("--max-tokens", type=int, help="Default output token cap")
    parser.add_argument("--system-prompt", help="Default system prompt for prompt nodes")
    parser.add_argument(
        "--no-chunk",
        action="store_true",
        help="Single-prompt mode: do not append the unit text to the prompt",
    )

    parser.add_argument(
        "--export",
        choices=[f.value for f in ExportFormat],
        help="Export the results in this format",
    )
    parser.add_argument("--no-headers", action="store_true", help="Export without per-unit headers")
    parser.add_argument("--response-key", help="Context key exported as each unit's response")
    parser.add_argument("--output", "-o", help="Output file (directory for 'documents')")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
