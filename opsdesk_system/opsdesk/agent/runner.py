"""
Runs a validated plan against the tool backend.
What it does:
- Executes steps strictly in order, one backend call at a time
- Resolves placeholders from earlier results before each call
- Emits a progress notification per completed step
- Stops at the first failing step (no rollback of earlier steps)
- Turns results into one natural-language response, with a deterministic fallback

And, the main purpose:
Drive plan -> execution -> response, never losing step output.
"""


from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from opsdesk.agent.models import ExecutionPlan, ExecutionStep, StepResult
from opsdesk.agent.resolver import PlaceholderResolver
from opsdesk.agent.tracer import Tracer
from opsdesk.core.errors import BackendError, ChainExecutionError, ReasoningServiceError, StepExecutionError
from opsdesk.core.logging import get_logger
from opsdesk.llm.prompts import (
    RESPONSE_SYSTEM,
    SUMMARY_SYSTEM,
    build_response_prompt,
    build_summary_prompt,
)
from opsdesk.tools.models import ToolCallResult

log = get_logger("agent.runner")

ProgressCallback = Callable[[ExecutionStep, StepResult], Awaitable[None]]


class ToolBackend(Protocol):
    async def call_tool(self, name: str, arguments: dict | None) -> ToolCallResult: ...


@dataclass
class ChainOutcome:
    results: list[StepResult]
    response: str


def fallback_response(results: list[StepResult]) -> str:
    return "\n\n".join(
        f"**Step {r.position}: {r.tool_name}**\n\n{r.raw_output or '(no output)'}" for r in results
    )


class ChainRunner:
    def __init__(
        self,
        backend: ToolBackend,
        reasoner,
        *,
        resolver: PlaceholderResolver | None = None,
        tracer: Tracer | None = None,
    ):
        self.backend = backend
        self.reasoner = reasoner
        self.resolver = resolver or PlaceholderResolver()
        self.tracer = tracer

    async def execute(
        self,
        plan: ExecutionPlan,
        *,
        execution_id: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> list[StepResult]:
        results: list[StepResult] = []

        for step in plan.steps:
            arguments = self.resolver.resolve(step.arguments, results)
            log.info(f"Step {step.number}/{len(plan.steps)}: {step.tool_name}")
            await self._trace(execution_id, step.index, "tool", {"tool": step.tool_name, "args": arguments})

            try:
                output = await self.backend.call_tool(step.tool_name, arguments)
            except BackendError as e:
                failure = StepExecutionError(step.number, step.tool_name, str(e))
                raise await self._failure(execution_id, failure, results) from e
            if output.is_error:
                failure = StepExecutionError(step.number, step.tool_name, output.text or "backend reported an error")
                raise await self._failure(execution_id, failure, results)

            result = StepResult(
                step_index=step.index,
                tool_name=step.tool_name,
                raw_output=output.text,
                resolved_arguments=arguments,
            )
            results.append(result)
            await self._trace(execution_id, step.index, "tool_output", {"output": result.raw_output})
            if on_progress is not None:
                await on_progress(step, result)

        return results

    async def respond(self, request_text: str, plan: ExecutionPlan, results: list[StepResult]) -> str:
        try:
            if plan.is_chain:
                steps = [(r.position, r.tool_name, r.raw_output) for r in results]
                return await self.reasoner.chat(
                    SUMMARY_SYSTEM, build_summary_prompt(request_text, steps), temperature=0.3
                )
            only = results[0]
            return await self.reasoner.chat(
                RESPONSE_SYSTEM,
                build_response_prompt(request_text, only.tool_name, only.raw_output),
                temperature=0.3,
                max_tokens=400,
            )
        except ReasoningServiceError as e:
            log.warning(f"Response formatting unavailable, returning raw step output: {e}")
            return fallback_response(results)

    async def run(
        self,
        plan: ExecutionPlan,
        request_text: str,
        *,
        execution_id: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> ChainOutcome:
        results = await self.execute(plan, execution_id=execution_id, on_progress=on_progress)
        response = await self.respond(request_text, plan, results)
        await self._trace(execution_id, None, "summary", {"response": response})
        return ChainOutcome(results=results, response=response)

    async def _failure(
        self, execution_id: str, failure: StepExecutionError, results: list[StepResult]
    ) -> ChainExecutionError:
        log.error(str(failure))
        await self._trace(
            execution_id,
            failure.position - 1,
            "error",
            {"tool": failure.tool_name, "position": failure.position, "error": failure.message},
        )
        return ChainExecutionError(failure, list(results))

    async def _trace(self, execution_id: str, step_index: int | None, event_type: str, payload: dict):
        if self.tracer is not None and execution_id:
            await self.tracer.trace(execution_id, step_index, event_type, payload)
