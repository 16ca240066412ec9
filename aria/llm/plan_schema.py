from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ValueKind = Literal["string", "int", "bool", "null"]


class DynamicValue(BaseModel):
    """Untyped tool argument decoded from model output.

    Exactly one of the four kinds is active. Anything outside the closed set
    (floats, lists, objects) is folded into ``string`` using its JSON text.
    """

    model_config = ConfigDict(frozen=True)

    kind: ValueKind
    value: str | int | bool | None = None

    @classmethod
    def string(cls, value: str) -> "DynamicValue":
        return cls(kind="string", value=value)

    @classmethod
    def integer(cls, value: int) -> "DynamicValue":
        return cls(kind="int", value=value)

    @classmethod
    def boolean(cls, value: bool) -> "DynamicValue":
        return cls(kind="bool", value=value)

    @classmethod
    def null(cls) -> "DynamicValue":
        return cls(kind="null", value=None)

    @classmethod
    def from_json(cls, raw: Any) -> "DynamicValue":
        if isinstance(raw, DynamicValue):
            return raw
        # bool is a subclass of int, so it must be checked first
        if isinstance(raw, bool):
            return cls.boolean(raw)
        if isinstance(raw, int):
            return cls.integer(raw)
        if raw is None:
            return cls.null()
        if isinstance(raw, str):
            return cls.string(raw)
        return cls.string(json.dumps(raw, ensure_ascii=False))

    def stringify(self) -> str:
        if self.kind == "string":
            return str(self.value)
        if self.kind == "int":
            return str(int(self.value))  # type: ignore[arg-type]
        if self.kind == "bool":
            return "true" if self.value else "false"
        return ""


def _coerce_args(value: Any) -> dict[str, DynamicValue]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("tool args must be an object")
    return {str(key): DynamicValue.from_json(item) for key, item in value.items()}


class TalkStep(BaseModel):
    step: Literal["talk"] = "talk"
    say: str


class ToolStep(BaseModel):
    step: Literal["tool"] = "tool"
    name: str = Field(..., min_length=1)
    args: dict[str, DynamicValue] = Field(default_factory=dict)
    say: str | None = None

    @field_validator("args", mode="before")
    @classmethod
    def coerce_args(cls, value: Any) -> dict[str, DynamicValue]:
        return _coerce_args(value)

    def string_args(self) -> dict[str, str]:
        return {key: item.stringify() for key, item in self.args.items()}


class AskStep(BaseModel):
    step: Literal["ask"] = "ask"
    slot: str
    prompt: str

    @model_validator(mode="before")
    @classmethod
    def merge_slots(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        slots = data.get("slots") or []
        if isinstance(slots, str):
            slots = [slots]
        names = [str(item).strip() for item in slots if str(item).strip()]
        if not names:
            single = data.get("slot") or ""
            names = [part.strip() for part in str(single).split(",") if part.strip()]
        if not names:
            raise ValueError("ask step requires a non-empty slot or slots")
        merged = {key: item for key, item in data.items() if key != "slots"}
        merged["slot"] = ",".join(names)
        return merged


class DelegateStep(BaseModel):
    step: Literal["delegate"] = "delegate"
    task: str = Field(..., min_length=1)
    context: str = ""
    say: str | None = None

    @field_validator("context", mode="before")
    @classmethod
    def none_context(cls, value: Any) -> Any:
        return "" if value is None else value


PlanStep = Annotated[Union[TalkStep, ToolStep, AskStep, DelegateStep], Field(discriminator="step")]


class ToolCall(BaseModel):
    """Native function call returned by providers that support tool calling."""

    id: str | None = None
    name: str
    arguments: dict[str, str] = Field(default_factory=dict)


class Plan(BaseModel):
    """Ordered steps the assistant performs for one turn."""

    steps: list[PlanStep] = Field(..., min_length=1)
    say: str | None = None

    @field_validator("steps", mode="before")
    @classmethod
    def lowercase_step_tags(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        normalized: list[Any] = []
        for item in value:
            if isinstance(item, dict) and isinstance(item.get("step"), str):
                item = {**item, "step": item["step"].strip().lower()}
            normalized.append(item)
        return normalized

    def derived_say(self) -> str:
        if self.say and self.say.strip():
            return self.say
        for step in self.steps:
            if isinstance(step, (TalkStep, ToolStep, DelegateStep)) and step.say and step.say.strip():
                return step.say
        return ""

    @classmethod
    def talk(cls, text: str) -> "Plan":
        return cls(steps=[TalkStep(say=text)])

    @classmethod
    def from_action(cls, action: "Action") -> "Plan":
        if isinstance(action, TalkAction):
            return cls(steps=[TalkStep(say=action.say)])
        if isinstance(action, ToolAction):
            return cls(steps=[ToolStep(name=action.name, args=action.args)], say=action.say)
        if isinstance(action, DelegateAction):
            return cls(steps=[DelegateStep(task=action.task, context=action.context, say=action.say)])
        steps: list[Any] = []
        if action.say:
            steps.append(TalkStep(say=action.say))
        steps.append(DelegateStep(task=f"capability_gap: {action.goal}", context=f"missing: {action.missing}"))
        return cls(steps=steps)

    @classmethod
    def from_tool_calls(cls, calls: list[ToolCall], spoken_text: str | None = None) -> "Plan":
        steps: list[Any] = []
        if spoken_text and spoken_text.strip():
            steps.append(TalkStep(say=spoken_text))
        for call in calls:
            steps.append(ToolStep(name=call.name, args=dict(call.arguments)))
        return cls(steps=steps)


class TalkAction(BaseModel):
    action: Literal["TALK"] = "TALK"
    say: str


class ToolAction(BaseModel):
    action: Literal["TOOL"] = "TOOL"
    name: str = Field(..., min_length=1)
    args: dict[str, DynamicValue] = Field(default_factory=dict)
    say: str | None = None

    @field_validator("args", mode="before")
    @classmethod
    def coerce_args(cls, value: Any) -> dict[str, DynamicValue]:
        return _coerce_args(value)


class DelegateAction(BaseModel):
    action: Literal["DELEGATE"] = "DELEGATE"
    task: str = Field(..., min_length=1)
    context: str = ""
    say: str | None = None

    @field_validator("context", mode="before")
    @classmethod
    def none_context(cls, value: Any) -> Any:
        return "" if value is None else value


class CapabilityGapAction(BaseModel):
    action: Literal["CAPABILITY_GAP"] = "CAPABILITY_GAP"
    goal: str
    missing: str = ""
    proposed_capability_id: str | None = None
    say: str | None = None


Action = Union[TalkAction, ToolAction, DelegateAction, CapabilityGapAction]

_ACTION_TAGS: dict[str, type[BaseModel]] = {
    "TALK": TalkAction,
    "TOOL": ToolAction,
    "DELEGATE": DelegateAction,
    "DELEGATE_OPENAI": DelegateAction,
    "CAPABILITY_GAP": CapabilityGapAction,
}


def parse_action(payload: dict[str, Any]) -> Action:
    """Validate the flat single-action envelope.

    An unrecognised ``action`` value is taken as the tool name itself, which
    models frequently emit, e.g. ``{"action": "save_memory", "args": {...}}``.
    """
    raw_action = payload.get("action")
    if not isinstance(raw_action, str) or not raw_action.strip():
        raise ValueError("action must be a non-empty string")
    tag = raw_action.strip().upper()
    model = _ACTION_TAGS.get(tag)
    if model is None:
        data = {**payload, "action": "TOOL"}
        data.setdefault("name", raw_action.strip())
        return ToolAction.model_validate(data)
    data = {**payload, "action": "DELEGATE" if model is DelegateAction else tag}
    return model.model_validate(data)  # type: ignore[return-value]


__all__ = [
    "DynamicValue",
    "TalkStep",
    "ToolStep",
    "AskStep",
    "DelegateStep",
    "PlanStep",
    "ToolCall",
    "Plan",
    "TalkAction",
    "ToolAction",
    "DelegateAction",
    "CapabilityGapAction",
    "Action",
    "parse_action",
]
