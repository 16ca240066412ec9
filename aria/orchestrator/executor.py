from __future__ import annotations

from opentelemetry import trace

from aria.errors import ToolErrorKind
from aria.llm.plan_schema import AskStep, DelegateStep, Plan, TalkStep, ToolStep
from aria.orchestrator.events import Delegation, ExecutionResult, ToolFailure, ToolInvocation
from aria.telemetry.logging import get_logger
from aria.tools.base import ToolResult
from aria.tools.registry import ToolRegistry

ACK_FALLBACK = "Okay, done."
FAILURE_FALLBACK = "Sorry, I couldn't get that done."


class PlanExecutor:
    """Runs plan steps in declaration order.

    A failed or unknown tool is recorded and the walk continues with the next
    step. ``ask`` and ``delegate`` end the walk: the first waits for the user,
    the second hands the turn to another reasoning path.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry
        self._logger = get_logger(__name__)
        self._tracer = trace.get_tracer(__name__)

    async def execute(self, plan: Plan) -> ExecutionResult:
        spoken: list[str] = []
        result = ExecutionResult(say_text="")

        def say(text: str | None) -> None:
            if text and text.strip() and (not spoken or spoken[-1] != text.strip()):
                spoken.append(text.strip())

        say(plan.say)
        for index, step in enumerate(plan.steps):
            if isinstance(step, TalkStep):
                say(step.say)
            elif isinstance(step, ToolStep):
                await self._run_tool(index, step, result, say)
            elif isinstance(step, AskStep):
                say(step.prompt)
                result.awaiting_slot = step.slot
                self._logger.info("plan.ask", slot=step.slot, skipped=len(plan.steps) - index - 1)
                break
            elif isinstance(step, DelegateStep):
                result.delegation = Delegation(task=step.task, context=step.context)
                say(step.say)
                self._logger.info("plan.delegate", task=step.task, skipped=len(plan.steps) - index - 1)
                break

        text = " ".join(spoken)
        if not text:
            text = FAILURE_FALLBACK if result.failures else ACK_FALLBACK
        result.say_text = text
        return result

    async def _run_tool(self, index: int, step: ToolStep, result: ExecutionResult, say) -> None:
        resolved = self._registry.normalize_tool_name(step.name)
        tool = self._registry.get(resolved) if resolved else None
        args = step.string_args()
        if tool is None:
            self._logger.warning("plan.tool.not_found", tool=step.name, step=index)
            result.failures.append(
                ToolFailure(index, step.name, ToolErrorKind.NOT_FOUND, f"No tool named '{step.name}'")
            )
            say(step.say)
            return

        with self._tracer.start_as_current_span("plan.tool") as span:
            span.set_attribute("tool.name", tool.name)
            try:
                outcome = await tool.execute(args)
            except Exception as exc:
                span.record_exception(exc)
                self._logger.exception("plan.tool.raised", tool=tool.name, step=index)
                outcome = ToolResult.failure(tool.name, f"{exc.__class__.__name__}: {exc}")
            span.set_attribute("tool.success", outcome.success)

        result.tool_calls.append(ToolInvocation(index, step.name, tool.name, args, outcome.success))
        say(step.say)
        if outcome.success:
            say(outcome.spoken_text)
            if outcome.output is not None:
                result.output_items.append(outcome.output)
            self._logger.info("plan.tool.ok", tool=tool.name, step=index)
            return

        result.failures.append(
            ToolFailure(
                index,
                tool.name,
                outcome.error_kind or ToolErrorKind.EXECUTION_FAILED,
                outcome.error or "tool failed",
            )
        )
        say(outcome.spoken_text)
        self._logger.warning(
            "plan.tool.failed",
            tool=tool.name,
            step=index,
            kind=(outcome.error_kind or ToolErrorKind.EXECUTION_FAILED).value,
            error=outcome.error,
        )


__all__ = ["PlanExecutor", "ACK_FALLBACK", "FAILURE_FALLBACK"]
