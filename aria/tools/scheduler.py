from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, Field, model_validator

from aria.errors import ToolErrorKind
from aria.tools.base import OutputItem, OutputKind, ToolContext, ToolResult, ToolSpec
from aria.telemetry.logging import get_logger

LOGGER = get_logger(__name__)

TaskKind = Literal["timer", "alarm"]


def _parse_when(value: str) -> datetime:
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_duration(seconds: float) -> str:
    total = max(int(round(seconds)), 0)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if secs or not parts:
        parts.append(f"{secs} second{'s' if secs != 1 else ''}")
    return " ".join(parts)


@dataclass(slots=True)
class ScheduledTask:
    id: str
    label: str
    kind: TaskKind
    fire_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fired: bool = False

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["fire_at"] = self.fire_at.isoformat()
        data["created_at"] = self.created_at.isoformat()
        return data


class TaskScheduler:
    """In-process timer and alarm scheduler backed by ``threading.Timer``."""

    def __init__(self, on_fire: Callable[[ScheduledTask], None] | None = None) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._on_fire = on_fire

    def set_on_fire(self, callback: Callable[[ScheduledTask], None] | None) -> None:
        self._on_fire = callback

    def schedule_timer(self, label: str, duration_s: float) -> ScheduledTask:
        if duration_s <= 0:
            raise ValueError("Timer duration must be positive")
        fire_at = datetime.now(timezone.utc) + timedelta(seconds=duration_s)
        return self._schedule(ScheduledTask(id=str(uuid4()), label=label, kind="timer", fire_at=fire_at))

    def schedule_alarm(self, label: str, when_iso: str) -> ScheduledTask:
        fire_at = _parse_when(when_iso)
        if fire_at <= datetime.now(timezone.utc):
            raise ValueError("Alarm time is in the past")
        return self._schedule(ScheduledTask(id=str(uuid4()), label=label, kind="alarm", fire_at=fire_at))

    def _schedule(self, task: ScheduledTask) -> ScheduledTask:
        with self._lock:
            self._tasks[task.id] = task
            self._arm_timer(task)
        LOGGER.info("scheduler.add", task=task.to_dict())
        return task

    def cancel(self, task_id: str) -> ScheduledTask | None:
        key = task_id.strip().lower()
        with self._lock:
            matches = [tid for tid in self._tasks if tid == key or tid.startswith(key)] if key else []
            if len(matches) != 1:
                return None
            task = self._tasks.pop(matches[0])
            timer = self._timers.pop(matches[0], None)
        if timer:
            timer.cancel()
        LOGGER.info("scheduler.cancelled", task_id=task.id)
        return task

    def active(self, kind: TaskKind | None = None) -> list[ScheduledTask]:
        with self._lock:
            tasks = [task for task in self._tasks.values() if kind is None or task.kind == kind]
        return sorted(tasks, key=lambda task: task.fire_at)

    def latest(self, kind: TaskKind | None = None) -> ScheduledTask | None:
        tasks = self.active(kind)
        if not tasks:
            return None
        return max(tasks, key=lambda task: task.created_at)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._tasks.clear()
        for timer in timers:
            timer.cancel()

    def _arm_timer(self, task: ScheduledTask) -> None:
        delta = (task.fire_at - datetime.now(timezone.utc)).total_seconds()
        timer = threading.Timer(max(delta, 0.0), self._trigger, args=(task.id,))
        timer.daemon = True
        self._timers[task.id] = timer
        timer.start()

    def _trigger(self, task_id: str) -> None:
        with self._lock:
            task = self._tasks.pop(task_id, None)
            self._timers.pop(task_id, None)
        if task is None:
            return
        task.fired = True
        LOGGER.info("scheduler.fire", task=task.to_dict())
        if self._on_fire is not None:
            try:
                self._on_fire(task)
            except Exception:
                LOGGER.exception("scheduler.fire_callback_failed", task_id=task.id)


class ScheduleTaskArgs(BaseModel):
    label: str = Field(default="Timer", max_length=120, validation_alias=AliasChoices("label", "name", "title"))
    in_seconds: float | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("in_seconds", "duration_seconds", "seconds", "duration")
    )
    run_at: str | None = Field(default=None, validation_alias=AliasChoices("run_at", "datetime_iso", "datetime", "when"))

    @model_validator(mode="after")
    def require_time(self) -> "ScheduleTaskArgs":
        if self.in_seconds is None and not self.run_at:
            raise ValueError("provide in_seconds or run_at")
        return self


class CancelTaskArgs(BaseModel):
    id: str = Field(..., min_length=4, validation_alias=AliasChoices("id", "task_id"))


class ListTasksArgs(BaseModel):
    kind: TaskKind | None = None


class TimerManageArgs(BaseModel):
    action: Literal["set", "start", "cancel", "stop", "list"] = "set"
    duration: float | None = Field(default=None, gt=0, validation_alias=AliasChoices("duration", "seconds", "in_seconds"))
    label: str = Field(default="Timer", max_length=120)
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "task_id"))


def _scheduler(ctx: ToolContext) -> TaskScheduler:
    if ctx.scheduler is None:
        raise RuntimeError("scheduler is not configured")
    return ctx.scheduler


def _describe(task: ScheduledTask) -> str:
    remaining = (task.fire_at - datetime.now(timezone.utc)).total_seconds()
    return f"{task.label} in {format_duration(remaining)}"


def schedule_task(args: ScheduleTaskArgs, ctx: ToolContext) -> ToolResult:
    scheduler = _scheduler(ctx)
    try:
        if args.in_seconds is not None:
            task = scheduler.schedule_timer(args.label, args.in_seconds)
            return ToolResult.ok("schedule_task", spoken_text=f"{task.label} set for {format_duration(args.in_seconds)}.")
        task = scheduler.schedule_alarm(args.label if args.label != "Timer" else "Alarm", args.run_at or "")
    except ValueError as exc:
        return ToolResult.failure("schedule_task", str(exc), ToolErrorKind.INVALID_ARGUMENTS)
    return ToolResult.ok("schedule_task", spoken_text=f"Alarm set for {task.fire_at.strftime('%H:%M')} UTC.")


def cancel_task(args: CancelTaskArgs, ctx: ToolContext) -> ToolResult:
    task = _scheduler(ctx).cancel(args.id)
    if task is None:
        return ToolResult.failure("cancel_task", f"No active task with id '{args.id}'", ToolErrorKind.INVALID_ARGUMENTS)
    return ToolResult.ok("cancel_task", spoken_text=f"{task.label} cancelled.")


def list_tasks(args: ListTasksArgs, ctx: ToolContext) -> ToolResult:
    tasks = _scheduler(ctx).active(args.kind)
    if not tasks:
        return ToolResult.ok("list_tasks", spoken_text="No active timers or alarms.")
    listing = "\n".join(f"- `{task.short_id}` {task.kind}: {_describe(task)}" for task in tasks)
    return ToolResult.ok(
        "list_tasks",
        spoken_text="Active tasks: " + "; ".join(_describe(task) for task in tasks) + ".",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload=f"**Scheduled**\n{listing}"),
    )


def manage_timer(args: TimerManageArgs, ctx: ToolContext) -> ToolResult:
    scheduler = _scheduler(ctx)
    if args.action == "list":
        timers = scheduler.active("timer")
        if not timers:
            return ToolResult.ok("timer.manage", spoken_text="No active timers.")
        return ToolResult.ok("timer.manage", spoken_text="Active timers: " + "; ".join(_describe(t) for t in timers) + ".")
    if args.action in ("cancel", "stop"):
        target = scheduler.cancel(args.id) if args.id else None
        if target is None and not args.id:
            latest = scheduler.latest("timer")
            target = scheduler.cancel(latest.id) if latest else None
        if target is None:
            return ToolResult.failure("timer.manage", "No matching timer to cancel", ToolErrorKind.INVALID_ARGUMENTS)
        return ToolResult.ok("timer.manage", spoken_text=f"Timer '{target.label}' cancelled.")
    if args.duration is None:
        return ToolResult.failure("timer.manage", "Missing required argument 'duration'", ToolErrorKind.INVALID_ARGUMENTS)
    scheduler.schedule_timer(args.label, args.duration)
    return ToolResult.ok("timer.manage", spoken_text=f"Timer set for {format_duration(args.duration)}.")


SCHEDULER = TaskScheduler()


def scheduler_tools(context: ToolContext) -> list[ToolSpec]:
    return [
        ToolSpec(
            name="schedule_task",
            description="Set a timer or an alarm",
            parameter_description="Args: label, in_seconds (timer) or run_at (ISO 8601 alarm)",
            request_model=ScheduleTaskArgs,
            handler=schedule_task,
            context=context,
        ),
        ToolSpec(
            name="cancel_task",
            description="Cancel a timer or alarm by id",
            parameter_description="Args: id (string)",
            request_model=CancelTaskArgs,
            handler=cancel_task,
            context=context,
        ),
        ToolSpec(
            name="list_tasks",
            description="List active timers and alarms",
            parameter_description="Args: kind (timer|alarm, optional)",
            request_model=ListTasksArgs,
            handler=list_tasks,
            context=context,
        ),
        ToolSpec(
            name="timer.manage",
            description="Set, cancel or list timers",
            parameter_description="Args: action (set|cancel|list), duration (seconds), label, id",
            request_model=TimerManageArgs,
            handler=manage_timer,
            context=context,
        ),
    ]


__all__ = [
    "TaskScheduler",
    "ScheduledTask",
    "SCHEDULER",
    "format_duration",
    "scheduler_tools",
    "ScheduleTaskArgs",
    "CancelTaskArgs",
    "ListTasksArgs",
    "TimerManageArgs",
]
