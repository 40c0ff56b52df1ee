import asyncio
from typing import Any

import pytest
from fakes import CALLER, RecordingAudit, ScriptedModel

from taskpilot.audit import ExecutionRecord, FileAuditStore
from taskpilot.core.loop import (
    COMPLETED_FALLBACK,
    EMPTY_RESPONSE_MESSAGE,
    PARTIAL_MESSAGE,
    RATE_LIMIT_MESSAGE,
    history_turns,
)
from taskpilot.core.types import ModelReply, StructuredToolCall
from taskpilot.errors import RateLimitedError


def _call(name: str, arguments: str) -> str:
    return f"TOOL_CALL: {name}\nARGUMENTS: {arguments}"


@pytest.mark.asyncio
async def test_plain_answer_is_success(make_loop, audit: RecordingAudit) -> None:
    model = ScriptedModel(["Done"])

    result = await make_loop(model).execute_task("Say done", CALLER)

    assert result.status == "success"
    assert result.result_text == "Done"
    assert result.actions == ()
    assert result.iterations == 1
    assert len(audit.summaries) == 1


@pytest.mark.asyncio
async def test_unknown_tool_fails_and_loop_continues(make_loop) -> None:
    model = ScriptedModel([_call("ghost", "{}"), "Could not find that tool."])

    result = await make_loop(model).execute_task("Use ghost", CALLER)

    assert result.status == "success"
    assert [(action.name, action.status) for action in result.actions] == [("ghost", "failed")]
    last_turn = model.calls[1][-1]
    assert last_turn.role == "tool_result"
    assert last_turn.status == "failed"
    assert last_turn.content == "unknown tool: ghost"


@pytest.mark.asyncio
async def test_empty_replies_are_nudged_then_loop_proceeds(make_loop, calls: list[dict[str, Any]]) -> None:
    model = ScriptedModel(["", None, _call("echo", '{"text": "hi"}'), "Echoed."])

    result = await make_loop(model).execute_task("Echo hi", CALLER)

    assert result.status == "success"
    assert result.result_text == "Echoed."
    assert result.iterations == 4
    assert len(calls) == 1
    nudges = [turn for turn in model.calls[2] if turn.role == "system" and "previous response was empty" in turn.content]
    assert len(nudges) == 2
    assert "TOOL_CALL: tool_name" in nudges[0].content


@pytest.mark.asyncio
async def test_empty_replies_abort_after_retry_bound(make_loop, audit: RecordingAudit) -> None:
    model = ScriptedModel(["", " ", "\n"])

    result = await make_loop(model).execute_task("Anything", CALLER)

    assert result.status == "error"
    assert result.result_text == EMPTY_RESPONSE_MESSAGE
    assert result.iterations == 3
    assert audit.summaries[0].error_message == "model returned empty responses after 3 iterations"


@pytest.mark.asyncio
async def test_same_call_on_two_iterations_runs_handler_once(make_loop, calls: list[dict[str, Any]]) -> None:
    request = _call("echo", '{"text": "once"}')
    model = ScriptedModel([request, request, "Finished."])

    result = await make_loop(model).execute_task("Echo once", CALLER)

    assert result.status == "success"
    assert len(calls) == 1
    assert len(result.actions) == 1
    reminder = model.calls[2][-1]
    assert reminder.role == "tool_result"
    assert reminder.content == "Tool echo was already executed with these arguments. Result: echo:once"


@pytest.mark.asyncio
async def test_duplicate_within_one_turn_gets_reminder(make_loop, calls: list[dict[str, Any]]) -> None:
    request = _call("echo", '{"text": "x"}')
    model = ScriptedModel([f"{request}\n{request}", "ok"])

    result = await make_loop(model).execute_task("Echo x twice", CALLER)

    assert len(calls) == 1
    assert len(result.actions) == 1
    roles = [turn.role for turn in model.calls[1][-2:]]
    assert roles == ["tool_result", "tool_result"]
    assert model.calls[1][-1].content.startswith("Tool echo was already executed")


@pytest.mark.asyncio
async def test_iteration_ceiling_yields_partial_success(make_loop, calls: list[dict[str, Any]]) -> None:
    replies = [_call("echo", f'{{"text": "{index}"}}') for index in range(10)]
    model = ScriptedModel(replies)

    result = await make_loop(model).execute_task("Keep echoing", CALLER)

    assert result.status == "partial_success"
    assert result.result_text == PARTIAL_MESSAGE
    assert result.iterations == 5
    assert len(model.calls) == 5
    assert [action.text for action in result.actions] == [f"echo:{index}" for index in range(5)]


@pytest.mark.asyncio
async def test_custom_iteration_ceiling_is_enforced(make_loop) -> None:
    model = ScriptedModel([_call("echo", f'{{"text": "{index}"}}') for index in range(4)])

    result = await make_loop(model, max_iterations=2).execute_task("Echo", CALLER)

    assert result.status == "partial_success"
    assert len(model.calls) == 2


@pytest.mark.asyncio
async def test_structured_tool_calls_are_dispatched(make_loop, calls: list[dict[str, Any]]) -> None:
    model = ScriptedModel([
        ModelReply(text="", tool_calls=[StructuredToolCall(name="echo", arguments={"text": "native"})]),
        "Done natively.",
    ])

    result = await make_loop(model).execute_task("Echo natively", CALLER)

    assert result.status == "success"
    assert calls == [{"tool": "echo", "text": "native", "caller": CALLER}]


@pytest.mark.asyncio
async def test_all_markers_malformed_returns_text_as_answer(make_loop) -> None:
    text = "TOOL_CALL: echo\nARGUMENTS: {broken"
    model = ScriptedModel([text])

    result = await make_loop(model).execute_task("Echo", CALLER)

    assert result.status == "success"
    assert result.result_text == text
    assert result.actions == ()


@pytest.mark.asyncio
async def test_model_error_keeps_accumulated_actions(make_loop, audit: RecordingAudit) -> None:
    model = ScriptedModel([_call("echo", '{"text": "a"}'), RuntimeError("connection reset")])

    result = await make_loop(model).execute_task("Echo", CALLER)

    assert result.status == "error"
    assert result.result_text == "Task failed: connection reset"
    assert [action.text for action in result.actions] == ["echo:a"]
    assert audit.outcomes[0] == result.actions


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [
        RateLimitedError("slow down"),
        RuntimeError("HTTP 429: quota exceeded"),
        RuntimeError("Too Many Requests"),
    ],
)
async def test_rate_limit_gets_friendly_message(make_loop, audit: RecordingAudit, exc: Exception) -> None:
    model = ScriptedModel([exc])

    result = await make_loop(model).execute_task("Echo", CALLER)

    assert result.status == "error"
    assert result.result_text == RATE_LIMIT_MESSAGE
    assert result.error == str(exc)
    assert audit.summaries[0].error_message == RATE_LIMIT_MESSAGE


@pytest.mark.asyncio
async def test_model_timeout_is_error(make_loop) -> None:
    class SlowModel:
        async def chat(self, turns):
            await asyncio.sleep(5)
            return ModelReply(text="late")

    result = await make_loop(SlowModel(), model_timeout_seconds=0.05).execute_task("Echo", CALLER)

    assert result.status == "error"
    assert "did not respond within 0.05s" in result.result_text


@pytest.mark.asyncio
async def test_unknown_caller_is_error_and_audited(make_loop, audit: RecordingAudit) -> None:
    model = ScriptedModel([])

    result = await make_loop(model).execute_task("Echo", "stranger@example.com")

    assert result.status == "error"
    assert result.result_text == "Unknown user: stranger@example.com"
    assert model.calls == []
    assert audit.summaries[0].caller == "stranger@example.com"


@pytest.mark.asyncio
async def test_audit_failure_does_not_change_result(make_loop) -> None:
    model = ScriptedModel(["Done"])

    result = await make_loop(model, recorder=RecordingAudit(fail=True)).execute_task("Echo", CALLER)

    assert result.status == "success"
    assert result.result_text == "Done"


@pytest.mark.asyncio
async def test_cancellation_records_partial_audit_and_reraises(make_loop, audit: RecordingAudit) -> None:
    started = asyncio.Event()

    class HangingModel:
        def __init__(self) -> None:
            self.count = 0

        async def chat(self, turns):
            self.count += 1
            if self.count == 1:
                return ModelReply(text=_call("echo", '{"text": "before"}'))
            started.set()
            await asyncio.sleep(10)
            return ModelReply(text="never")

    task = asyncio.create_task(make_loop(HangingModel()).execute_task("Echo", CALLER))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(audit.summaries) == 1
    summary = audit.summaries[0]
    assert summary.result.status == "error"
    assert [action.text for action in summary.result.actions] == ["echo:before"]


@pytest.mark.asyncio
async def test_system_prompt_history_and_request_seed_the_conversation(make_loop, audit: RecordingAudit) -> None:
    audit.recent_records = [
        ExecutionRecord(caller=CALLER, action_type="task_execution", status="success", input_data={"task": "Earlier task"})
    ]
    model = ScriptedModel(["Done"])
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
        {"role": "system", "content": "ignored"},
        {"role": "assistant", "content": None},
    ]

    await make_loop(model).execute_task("Schedule a sync", CALLER, history=history, conversation_id="c-1")

    turns = model.calls[0]
    assert [turn.role for turn in turns] == ["system", "user", "assistant", "user"]
    assert CALLER in turns[0].content
    assert "Earlier task" in turns[0].content
    assert "anna@example.com" in turns[0].content
    assert turns[-1].content == "Schedule a sync"
    assert audit.summaries[0].conversation_id == "c-1"


@pytest.mark.asyncio
async def test_audit_summary_carries_request_and_iterations(make_loop, audit: RecordingAudit) -> None:
    model = ScriptedModel([_call("boom", "{}"), "Failed politely."])

    result = await make_loop(model).execute_task("Break it", CALLER)

    summary = audit.summaries[0]
    assert summary.request == "Break it"
    assert summary.result is result
    assert summary.result.iterations == 2
    assert summary.error_message is None
    assert [outcome.status for outcome in audit.outcomes[0]] == ["failed"]


def test_history_turns_filters_roles_and_missing_content() -> None:
    turns = history_turns([
        {"role": "user", "content": "a"},
        {"role": "tool_result", "content": "b"},
        {"content": "c"},
        {"role": "assistant", "content": 3},
    ])

    assert [(turn.role, turn.content) for turn in turns] == [("user", "a"), ("assistant", "3")]
    assert history_turns(None) == []
    assert COMPLETED_FALLBACK == "Task completed."


@pytest.mark.asyncio
@pytest.mark.parametrize("ceiling", [1, 2, 3])
async def test_empty_replies_up_to_a_low_ceiling_end_in_error(make_loop, audit: RecordingAudit, ceiling: int) -> None:
    model = ScriptedModel([""] * ceiling)

    result = await make_loop(model, max_iterations=ceiling).execute_task("Anything", CALLER)

    assert result.status == "error"
    assert result.result_text == EMPTY_RESPONSE_MESSAGE
    assert result.iterations == ceiling
    assert len(model.calls) == ceiling
    assert audit.summaries[0].error_message == f"model returned empty responses after {ceiling} iterations"


@pytest.mark.asyncio
async def test_history_lookup_failure_is_error_and_audited(make_loop, audit: RecordingAudit, monkeypatch) -> None:
    def _broken(*args: object, **kwargs: object) -> list[ExecutionRecord]:
        raise OSError("history unavailable")

    monkeypatch.setattr(audit, "recent", _broken)
    model = ScriptedModel([])

    result = await make_loop(model).execute_task("Echo", CALLER)

    assert result.status == "error"
    assert result.result_text == "Task failed: history unavailable"
    assert result.error == "history unavailable"
    assert model.calls == []
    assert audit.summaries[0].error_message == "history unavailable"


@pytest.mark.asyncio
async def test_corrupt_audit_file_does_not_break_execution(make_loop, tmp_path) -> None:
    path = tmp_path / "audit.jsonl"
    path.write_bytes(b'\xff\xfe{"broken": true}\n')
    store = FileAuditStore(path)
    model = ScriptedModel(["Done"])

    result = await make_loop(model, recorder=store).execute_task("hi", CALLER)

    assert result.status == "success"
    assert result.result_text == "Done"
    assert [record.input_data["task"] for record in store.recent(CALLER)] == ["hi"]
