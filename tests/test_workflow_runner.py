"""Tests for workflow execution over process units."""

from __future__ import annotations

import asyncio

from conftest import BlockingProvider, ErrorProvider, FakeProvider

from workbench.chunking.schemas import ChunkMode, ChunkParams, ProcessUnit
from workbench.executor.cancellation import CancellationSignal
from workbench.executor.schemas import LogKind, RunSettings, UnitStatus
from workbench.executor.workflow_runner import (
    build_context,
    execute,
    execute_script,
    run_document,
)
from workbench.workflows import parse_nodes

SETTINGS = RunSettings(model="gpt-test", temperature=0.1, max_tokens=50)

FILTER_SCRIPT = """\
nodes:
  - id: filter
    type: func
    expr: |
      words = chunk.split()
      if len(words) < 5:
          helpers.log("too short")
          return {"skip": True, "reason": "short"}
      return {"word_count": len(words)}
  - id: ask
    type: prompt
    prompt: "Count: {{ word_count }}"
  - id: show
    type: print
    message: "{{ index }} -> {{ ask }}"
"""


def run(coro):
    return asyncio.run(coro)


def statuses(result) -> list[UnitStatus]:
    return [o.status for o in result.outcomes]


# =========================================================================
# 1. Context seeding
# =========================================================================


class TestBuildContext:
    def test_text_unit(self):
        context = build_context(ProcessUnit(index=3, raw_text="hello"))
        assert context == {"chunk": "hello", "row": None, "data": None, "index": 3}

    def test_table_unit_seeds_columns_and_aliases(self):
        unit = ProcessUnit(index=0, raw_text="{}", row={"name": "Ada", "chunk": "shadowed"})
        context = build_context(unit)
        assert context["name"] == "Ada"
        assert context["chunk"] == "{}"
        assert context["row"] == {"name": "Ada", "chunk": "shadowed"}
        assert context["data"] is context["row"]


# =========================================================================
# 2. Node semantics
# =========================================================================


class TestExecute:
    def test_skip_short_circuits_only_that_unit(self, text_units):
        provider = FakeProvider(reply="five")
        result = run(execute(parse_nodes(FILTER_SCRIPT), text_units, provider, settings=SETTINGS))

        assert statuses(result) == [UnitStatus.COMPLETED, UnitStatus.SKIPPED, UnitStatus.COMPLETED]
        assert result.outcomes[1].node_id == "filter"
        assert len(provider.requests) == 2
        assert [s.index for s in result.per_unit] == [0, 2]
        assert result.per_unit[0].context["word_count"] == 9
        assert result.per_unit[0].context["ask"] == "five"

        lines = result.log_lines()
        assert "[1] too short" in lines
        assert "[0] 0 -> five" in lines
        assert not any(line.startswith("[1] 1 ->") for line in lines)
        skip_entries = [e for e in result.logs if e.kind == LogKind.SKIP]
        assert len(skip_entries) == 1 and "short" in skip_entries[0].message

    def test_prompt_request_uses_rendered_template_and_defaults(self, text_units):
        provider = FakeProvider()
        run(execute(parse_nodes(FILTER_SCRIPT), text_units[:1], provider, settings=SETTINGS))

        request = provider.requests[0]
        assert request.prompt_text == "Count: 9"
        assert request.model == "gpt-test"
        assert request.temperature == 0.1
        assert request.max_tokens == 50
        assert request.system_prompt == SETTINGS.system_prompt
        assert request.include_chunk is False
        assert request.chunk_text == text_units[0].raw_text

    def test_node_overrides_win_over_settings(self):
        nodes = parse_nodes(
            "nodes:\n  - id: p\n    type: prompt\n    prompt: Hi\n    system: Be {{ index }}\n"
            "    model: claude-test\n    temperature: 0\n    max_tokens: 9\n    append_chunk: true\n"
        )
        provider = FakeProvider()
        run(execute(nodes, [ProcessUnit(index=4, raw_text="text")], provider, settings=SETTINGS))

        request = provider.requests[0]
        assert request.system_prompt == "Be 4"
        assert request.model == "claude-test"
        assert request.temperature == 0.0
        assert request.max_tokens == 9
        assert request.include_chunk is True

    def test_provider_error_fails_unit_and_run_continues(self, text_units):
        nodes = parse_nodes(
            "nodes:\n  - id: p\n    type: prompt\n    prompt: Hi\n"
            "  - id: s\n    type: print\n    message: never\n"
        )
        provider = ErrorProvider("rate limited")
        result = run(execute(nodes, text_units, provider, settings=SETTINGS))

        assert statuses(result) == [UnitStatus.FAILED] * 3
        assert len(provider.requests) == 3
        assert result.per_unit == []
        assert all("rate limited" in (o.error or "") for o in result.outcomes)
        assert not any(e.kind == LogKind.PRINT for e in result.logs)
        assert sum(1 for e in result.logs if e.kind == LogKind.NODE_ERROR) == 3

    def test_prompt_without_template_fails_without_calling_provider(self, text_units):
        nodes = parse_nodes("nodes:\n  - id: p\n    type: prompt\n")
        provider = FakeProvider()
        result = run(execute(nodes, text_units[:1], provider, settings=SETTINGS))

        assert statuses(result) == [UnitStatus.FAILED]
        assert provider.requests == []

    def test_json_response_is_parsed(self):
        nodes = parse_nodes(
            "nodes:\n  - id: c\n    type: prompt\n    prompt: Classify\n    expect: json\n    output: label\n"
            "  - id: s\n    type: print\n    message: \"{{ label.topic }}\"\n"
        )
        provider = FakeProvider(reply='```json\n{"topic": "cats"}\n```')
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="x")], provider, settings=SETTINGS))

        assert result.per_unit[0].context["label"] == {"topic": "cats"}
        assert result.log_lines() == ["[0] cats"]

    def test_invalid_json_is_stored_raw_with_warning(self):
        nodes = parse_nodes(
            "nodes:\n  - id: c\n    type: prompt\n    prompt: Classify\n    expect: json\n"
        )
        provider = FakeProvider(reply="not json at all")
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="x")], provider, settings=SETTINGS))

        assert statuses(result) == [UnitStatus.COMPLETED]
        assert result.per_unit[0].context["c"] == "not json at all"
        assert [e.kind for e in result.logs] == [LogKind.FORMAT_WARNING]

    def test_func_error_fails_unit(self):
        nodes = parse_nodes("nodes:\n  - id: f\n    type: func\n    expr: return 1 / 0\n")
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="x")], FakeProvider(), settings=SETTINGS))

        assert statuses(result) == [UnitStatus.FAILED]
        assert "ZeroDivisionError" in result.outcomes[0].error

    def test_func_row_writes_stay_in_unit_context(self):
        nodes = parse_nodes(
            "nodes:\n  - id: rename\n    type: func\n    expr: |\n"
            "      row[\"name\"] = \"X\"\n      return {}\n"
            "  - id: s\n    type: print\n    message: \"{{ row.name }}/{{ data.name }}\"\n"
        )
        unit = ProcessUnit(index=0, raw_text='{"name":"Ada"}', row={"name": "Ada"})
        result = run(execute(nodes, [unit], FakeProvider(), settings=SETTINGS))

        assert result.log_lines() == ["[0] X/X"]
        assert result.per_unit[0].context["row"] == {"name": "X"}
        assert unit.row == {"name": "Ada"}

    def test_func_non_dict_result_stored_under_node_id(self):
        nodes = parse_nodes(
            "nodes:\n  - id: upper\n    type: func\n    expr: chunk.upper()\n"
            "  - id: s\n    type: print\n    message: \"{{ upper }}\"\n"
        )
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="abc")], FakeProvider(), settings=SETTINGS))
        assert result.log_lines() == ["[0] ABC"]

    def test_helpers_template_renders_against_context(self):
        nodes = parse_nodes(
            "nodes:\n  - id: f\n    type: func\n"
            "    expr: return {\"greeting\": helpers.template(\"Hi {{ name }}\")}\n"
        )
        unit = ProcessUnit(index=0, raw_text="{}", row={"name": "Ada"})
        result = run(execute(nodes, [unit], FakeProvider(), settings=SETTINGS))
        assert result.per_unit[0].context["greeting"] == "Hi Ada"

    def test_unknown_node_type_warns_and_continues(self):
        nodes = parse_nodes(
            "nodes:\n  - id: w\n    type: webhook\n  - id: s\n    type: print\n    message: done\n"
        )
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="x")], FakeProvider(), settings=SETTINGS))

        assert statuses(result) == [UnitStatus.COMPLETED]
        assert [e.kind for e in result.logs] == [LogKind.AUTHORING_WARNING, LogKind.PRINT]

    def test_print_renders_missing_values_as_empty(self):
        nodes = parse_nodes("nodes:\n  - id: s\n    type: print\n    message: \"[{{ missing }}]\"\n")
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="x")], FakeProvider(), settings=SETTINGS))
        assert result.log_lines() == ["[0] []"]

    def test_snapshot_chunk_is_original_text(self):
        nodes = parse_nodes("nodes:\n  - id: f\n    type: func\n    expr: return {\"chunk\": \"changed\"}\n")
        result = run(execute(nodes, [ProcessUnit(index=0, raw_text="orig")], FakeProvider(), settings=SETTINGS))
        assert result.per_unit[0].context["chunk"] == "orig"

    def test_unit_limit(self, text_units):
        nodes = parse_nodes("nodes:\n  - id: s\n    type: print\n    message: \"{{ index }}\"\n")
        result = run(execute(nodes, text_units, FakeProvider(), settings=SETTINGS, unit_limit=2))
        assert len(result.outcomes) == 2
        assert result.log_lines() == ["[0] 0", "[1] 1"]

    def test_usage_and_callbacks(self, text_units):
        nodes = parse_nodes("nodes:\n  - id: p\n    type: prompt\n    prompt: Hi\n")
        provider = FakeProvider(reply="hello", input_tokens=7, output_tokens=3)
        progress: list[tuple] = []
        deltas: list[str] = []
        result = run(execute(
            nodes, text_units, provider,
            settings=SETTINGS,
            on_progress=lambda position, total, node_id: progress.append((position, total, node_id)),
            on_delta=deltas.append,
        ))

        assert result.usage.calls == 3
        assert result.usage.input_tokens == 21
        assert result.usage.output_tokens == 9
        assert progress[:2] == [(0, 3, None), (0, 3, "p")]
        assert "".join(deltas) == "hello" * 3

    def test_empty_units(self, fake_provider):
        nodes = parse_nodes("nodes:\n  - id: s\n    type: print\n    message: hi\n")
        result = run(execute(nodes, [], fake_provider))
        assert result.outcomes == [] and result.logs == [] and not result.cancelled


# =========================================================================
# 3. Cancellation
# =========================================================================


class TestCancellation:
    def test_cancel_during_call(self, text_units):
        nodes = parse_nodes("nodes:\n  - id: p\n    type: prompt\n    prompt: Hi\n")
        provider = BlockingProvider(fast_calls=1)
        signal = CancellationSignal()

        async def scenario():
            async def cancel_when_blocked():
                while not provider.started.is_set():
                    await asyncio.sleep(0.01)
                signal.cancel("Stopped by test")

            result, _ = await asyncio.gather(
                execute(nodes, text_units, provider, settings=SETTINGS, signal=signal),
                cancel_when_blocked(),
            )
            return result

        result = asyncio.run(asyncio.wait_for(scenario(), timeout=10))

        assert result.cancelled
        assert statuses(result) == [UnitStatus.COMPLETED, UnitStatus.CANCELLED, UnitStatus.CANCELLED]
        assert result.per_unit[0].context["p"] == "fast"
        assert len(result.per_unit) == 1
        assert len(provider.requests) == 2
        assert provider.was_cancelled
        assert result.outcomes[2].error == "Stopped by test"

    def test_cancel_before_start(self, text_units):
        signal = CancellationSignal()
        signal.cancel()
        provider = FakeProvider()
        nodes = parse_nodes("nodes:\n  - id: p\n    type: prompt\n    prompt: Hi\n")
        result = run(execute(nodes, text_units, provider, signal=signal))

        assert result.cancelled
        assert statuses(result) == [UnitStatus.CANCELLED] * 3
        assert provider.requests == []


# =========================================================================
# 4. Script entry points
# =========================================================================


class TestScriptEntryPoints:
    def test_unparseable_script_is_run_error(self, text_units, fake_provider):
        result = run(execute_script("no nodes here", text_units, fake_provider))
        assert result.error
        assert result.outcomes == []
        assert fake_provider.requests == []

    def test_parse_warnings_lead_the_log(self, fake_provider):
        result = run(execute_script(
            "nodes:\n  - id: s\n    type: print\n    message: hi\n    colour: red\n",
            [ProcessUnit(index=0, raw_text="x")],
            fake_provider,
        ))
        assert len(result.warnings) == 1
        assert result.logs[0].kind == LogKind.AUTHORING_WARNING
        assert result.log_lines()[-1] == "[0] hi"

    def test_csv_document_end_to_end(self):
        script = """\
nodes:
  - id: greet
    type: func
    expr: return {"greeting": "Hi " + row["name"]}
  - id: ask
    type: prompt
    prompt: "Describe {{ name }} aged {{ age }}"
    output: description
  - id: show
    type: print
    message: "{{ greeting }}: {{ description }}"
"""
        provider = FakeProvider(reply=lambda request: f"<{request.prompt_text}>")
        result = run(run_document(
            "name,age\nAda,30\nLin,25",
            script,
            provider,
            ChunkParams(mode=ChunkMode.TABLE),
            settings=SETTINGS,
        ))

        assert result.error is None
        assert result.log_lines() == [
            "[0] Hi Ada: <Describe Ada aged 30>",
            "[1] Hi Lin: <Describe Lin aged 25>",
        ]
        assert result.per_unit[1].context["age"] == "25"
        assert result.usage.calls == 2
