"""Agentic single-reference verification.

A decision step (an LLM with tools) looks at the conversation so far and
either asks for exactly one adapter call or gives a final JSON verdict.
We run the tool, append its result under the call's correlation id and ask
again, until a verdict is parsed or the iteration cap is hit.

    INIT -> (TOOL_PENDING <-> TOOL_RESOLVED)* -> FINALIZING -> COMPLETE | ERROR
"""

import logging
from typing import Any, Callable, Optional, Protocol

import httpx

from .exceptions import MalformedDecisionError, VerifierError
from .keypool import KeyPool
from .models import (
    AttemptState,
    ChatMessage,
    DecisionResult,
    Reference,
    ToolCallRequest,
    Verdict,
    VerdictStatus,
    VerificationAttempt,
)
from .parsing import parse_final_verdict
from .prompts import AGENT_NUDGE_PROMPT, AGENT_SYSTEM_PROMPT, AGENT_USER_TEMPLATE
from .tools import (
    TOOLS,
    ToolContext,
    dispatch_tool,
    display_name,
    render_tool_result,
    tool_schemas,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 8

# Called with a processing step ("initializing", a tool name, "finalizing")
# and, for tool steps, the tool arguments.
StatusCallback = Callable[[str, Optional[dict[str, Any]]], None]


class DecisionMaker(Protocol):
    async def decide(
        self, history: list[ChatMessage], tools: list[dict[str, Any]]
    ) -> DecisionResult: ...


def checks_from_history(history: list[ChatMessage]) -> list[str]:
    checks: list[str] = []
    for msg in history:
        for call in msg.tool_calls or []:
            name = display_name(call.name)
            if call.name in TOOLS and name not in checks:
                checks.append(name)
    return checks


class AgentVerifier:
    def __init__(
        self,
        decision_maker: DecisionMaker,
        http: httpx.AsyncClient,
        key_pool: KeyPool,
        max_iterations: int = MAX_ITERATIONS,
        max_retries: int = 2,
        tool_names: Optional[list[str]] = None,
    ):
        self.decision_maker = decision_maker
        self.http = http
        self.key_pool = key_pool
        self.max_iterations = max_iterations
        self.max_retries = max_retries
        self.tool_names = tool_names

    def _init_attempt(self, reference: Reference) -> VerificationAttempt:
        return VerificationAttempt(
            history=[
                ChatMessage(role="system", content=AGENT_SYSTEM_PROMPT),
                ChatMessage(
                    role="user",
                    content=AGENT_USER_TEMPLATE.format(reference=reference.raw),
                ),
            ]
        )

    async def verify(
        self,
        reference: Reference,
        max_iterations: Optional[int] = None,
        on_status_update: Optional[StatusCallback] = None,
        performed_checks: Optional[set[str]] = None,
    ) -> Verdict:
        limit = max_iterations if max_iterations is not None else self.max_iterations
        notify = on_status_update or (lambda step, args=None: None)

        attempt = self._init_attempt(reference)
        ctx = ToolContext(
            http=self.http,
            key_pool=self.key_pool,
            reference=reference,
            max_retries=self.max_retries,
        )
        schemas = tool_schemas(self.tool_names)
        notify("initializing", None)

        while attempt.iteration < limit:
            try:
                decision = await self.decision_maker.decide(attempt.history, schemas)
            except VerifierError as e:
                return self._decision_failure(reference, attempt, e)

            if isinstance(decision, ToolCallRequest):
                await self._resolve_tool_call(
                    attempt, decision, ctx, notify, performed_checks
                )
                continue

            attempt.state = AttemptState.FINALIZING
            notify("finalizing", None)
            try:
                verdict = parse_final_verdict(decision.content, reference.raw)
            except MalformedDecisionError as e:
                logger.info(
                    "ref %s: iteration %d gave no final JSON, asking again",
                    reference.id,
                    attempt.iteration,
                )
                attempt.last_failure = str(e)
                attempt.history.append(
                    ChatMessage(role="assistant", content=decision.content)
                )
                attempt.history.append(ChatMessage(role="user", content=AGENT_NUDGE_PROMPT))
                attempt.iteration += 1
                continue

            attempt.state = AttemptState.COMPLETE
            return self._finish(reference, attempt, verdict)

        attempt.state = AttemptState.ERROR
        logger.warning(
            "ref %s: exhausted %d iterations without a verdict", reference.id, limit
        )
        return Verdict(
            status=VerdictStatus.ERROR,
            message=(
                f"Exhausted {limit} attempts without a final verdict. "
                f"Last failure: {attempt.last_failure or 'still gathering evidence'}"
            ),
            checks_performed=list(attempt.checks_performed),
            iterations=attempt.iteration,
        )

    async def _resolve_tool_call(
        self,
        attempt: VerificationAttempt,
        call: ToolCallRequest,
        ctx: ToolContext,
        notify: StatusCallback,
        performed_checks: Optional[set[str]],
    ) -> None:
        attempt.state = AttemptState.TOOL_PENDING
        attempt.pending_tool_call = call
        attempt.last_tool_call_id = call.call_id
        # The assistant turn carries only the call we honour
        attempt.history.append(ChatMessage(role="assistant", tool_calls=[call]))
        notify(call.name, call.arguments)

        if call.name in TOOLS:
            name = display_name(call.name)
            attempt.record_check(name)
            if performed_checks is not None:
                performed_checks.add(name)

        result = await dispatch_tool(call, ctx)
        logger.debug(
            "ref %s: %s -> valid=%s (%s)",
            ctx.reference.id,
            call.name,
            result.is_valid,
            result.message[:80],
        )

        attempt.history.append(
            ChatMessage(
                role="tool",
                content=render_tool_result(result),
                tool_call_id=attempt.last_tool_call_id,
                tool_name=call.name,
            )
        )
        attempt.tool_results[call.call_id] = result
        attempt.pending_tool_call = None
        attempt.state = AttemptState.TOOL_RESOLVED
        attempt.last_failure = None if result.is_valid else f"{call.name}: {result.message}"
        attempt.iteration += 1

    def _decision_failure(
        self, reference: Reference, attempt: VerificationAttempt, error: VerifierError
    ) -> Verdict:
        attempt.state = AttemptState.ERROR
        checks = list(attempt.checks_performed)
        if attempt.has_positive_signal:
            logger.warning(
                "ref %s: decision step failed after partial evidence: %s",
                reference.id,
                error,
            )
            return Verdict(
                status=VerdictStatus.NEEDS_HUMAN,
                message=(
                    "Some checks found supporting evidence but the verifier could "
                    f"not finish: {error.message}"
                ),
                checks_performed=checks,
                iterations=attempt.iteration,
            )
        logger.error("ref %s: decision step failed: %s", reference.id, error)
        return Verdict(
            status=VerdictStatus.ERROR,
            message=f"Verification service failure: {error.message}",
            checks_performed=checks,
            iterations=attempt.iteration,
        )

    def _finish(
        self, reference: Reference, attempt: VerificationAttempt, verdict: Verdict
    ) -> Verdict:
        checks = list(attempt.checks_performed) or checks_from_history(attempt.history)
        for check in verdict.checks_performed:
            if check not in checks:
                checks.append(check)

        sources = [r.source for r in attempt.tool_results.values() if r.is_valid and r.source]
        if verdict.repaired:
            logger.info("ref %s: final answer repaired with defaults", reference.id)
        logger.info(
            "ref %s: %s after %d iterations", reference.id, verdict.status.value, attempt.iteration
        )
        return verdict.model_copy(
            update={
                "checks_performed": checks,
                "verification_source": sources[-1] if sources else None,
                "iterations": attempt.iteration,
            }
        )
