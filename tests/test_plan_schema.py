from __future__ import annotations

import pytest
from pydantic import ValidationError

from aria.llm.plan_schema import (
    AskStep,
    DelegateStep,
    DynamicValue,
    Plan,
    TalkStep,
    ToolAction,
    ToolCall,
    ToolStep,
    parse_action,
)


def test_dynamic_value_stringifies_every_kind() -> None:
    assert DynamicValue.from_json("Paris").stringify() == "Paris"
    assert DynamicValue.from_json(3).stringify() == "3"
    assert DynamicValue.from_json(True).stringify() == "true"
    assert DynamicValue.from_json(False).stringify() == "false"
    assert DynamicValue.from_json(None).stringify() == ""


def test_dynamic_value_keeps_bool_distinct_from_int() -> None:
    assert DynamicValue.from_json(True).kind == "bool"
    assert DynamicValue.from_json(1).kind == "int"


def test_dynamic_value_folds_other_json_into_string() -> None:
    value = DynamicValue.from_json({"a": 1})
    assert value.kind == "string"
    assert value.stringify() == '{"a": 1}'
    assert DynamicValue.from_json(2.5).stringify() == "2.5"


def test_tool_step_projects_args_to_strings() -> None:
    step = ToolStep.model_validate({"name": "get_weather", "args": {"place": "Oslo", "days": 3, "metric": True}})
    assert step.string_args() == {"place": "Oslo", "days": "3", "metric": "true"}


def test_plan_decodes_steps_and_lowercases_tags() -> None:
    plan = Plan.model_validate(
        {
            "steps": [
                {"step": "TOOL", "name": "get_time", "args": {}},
                {"step": "Talk", "say": "Here you go."},
            ]
        }
    )
    assert isinstance(plan.steps[0], ToolStep)
    assert isinstance(plan.steps[1], TalkStep)


def test_plan_requires_at_least_one_step() -> None:
    with pytest.raises(ValidationError):
        Plan.model_validate({"steps": []})


def test_derived_say_prefers_earliest_step_say() -> None:
    plan = Plan.model_validate(
        {
            "steps": [
                {"step": "tool", "name": "get_weather", "args": {"place": "Rome"}},
                {"step": "tool", "name": "get_time", "args": {}, "say": "Checking the clock."},
                {"step": "talk", "say": "Done."},
            ]
        }
    )
    assert plan.derived_say() == "Checking the clock."


def test_derived_say_falls_back_to_talk_text() -> None:
    plan = Plan.model_validate({"steps": [{"step": "tool", "name": "x"}, {"step": "talk", "say": "Hi"}]})
    assert plan.derived_say() == "Hi"


def test_ask_step_merges_slot_lists() -> None:
    step = AskStep.model_validate({"slots": ["city", "date"], "prompt": "Where and when?"})
    assert step.slot == "city,date"
    with pytest.raises(ValidationError):
        AskStep.model_validate({"prompt": "What?"})


def test_delegate_step_accepts_null_context() -> None:
    step = DelegateStep.model_validate({"task": "research", "context": None})
    assert step.context == ""


def test_parse_action_treats_unknown_tag_as_tool_name() -> None:
    action = parse_action({"action": "save_memory", "args": {"content": "likes tea"}})
    assert isinstance(action, ToolAction)
    assert action.name == "save_memory"
    plan = Plan.from_action(action)
    assert isinstance(plan.steps[0], ToolStep)
    assert plan.steps[0].string_args() == {"content": "likes tea"}


def test_legacy_delegate_alias_lifts_to_delegate_step() -> None:
    plan = Plan.from_action(parse_action({"action": "delegate_openai", "task": "write an essay", "say": "On it."}))
    step = plan.steps[0]
    assert isinstance(step, DelegateStep)
    assert step.task == "write an essay"
    assert plan.derived_say() == "On it."


def test_capability_gap_becomes_talk_then_delegate() -> None:
    plan = Plan.from_action(
        parse_action({"action": "CAPABILITY_GAP", "goal": "book a flight", "missing": "travel API", "say": "I can't yet."})
    )
    assert [step.step for step in plan.steps] == ["talk", "delegate"]
    assert plan.steps[1].task == "capability_gap: book a flight"


def test_from_tool_calls_keeps_spoken_text_first() -> None:
    plan = Plan.from_tool_calls([ToolCall(name="get_time", arguments={"place": "Tokyo"})], "One moment.")
    assert isinstance(plan.steps[0], TalkStep)
    assert isinstance(plan.steps[1], ToolStep)
    assert plan.steps[1].string_args() == {"place": "Tokyo"}
