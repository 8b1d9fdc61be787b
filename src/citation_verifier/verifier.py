"""Single-reference entry point and strategy selection.

verify_reference() runs one verifier (agentic or waterfall) and folds its
verdict into a copy of the reference. It never raises: anything that escapes
the verifier becomes an ``error`` status on the reference.
"""

import logging
from collections import Counter
from typing import Optional, Protocol

import httpx

from .agent import AgentVerifier, StatusCallback
from .keypool import KeyPool
from .models import Reference, ReferenceStatus, Verdict
from .ollama_client import OllamaClient
from .waterfall import WaterfallVerifier

logger = logging.getLogger(__name__)

STRATEGIES = ("agentic", "waterfall")


class Verifier(Protocol):
    async def verify(
        self,
        reference: Reference,
        on_status_update: Optional[StatusCallback] = None,
        performed_checks: Optional[set[str]] = None,
    ) -> Verdict: ...


def create_verifier(
    strategy: str,
    llm: OllamaClient,
    http: httpx.AsyncClient,
    key_pool: KeyPool,
    max_iterations: int = 8,
    max_retries: int = 2,
) -> Verifier:
    if strategy == "agentic":
        return AgentVerifier(
            llm, http, key_pool, max_iterations=max_iterations, max_retries=max_retries
        )
    if strategy == "waterfall":
        return WaterfallVerifier(llm, http, key_pool, max_retries=max_retries)
    raise ValueError(f"Unknown strategy '{strategy}', expected one of {STRATEGIES}")


def apply_verdict(reference: Reference, verdict: Verdict) -> Reference:
    return reference.model_copy(
        update={
            "status": ReferenceStatus(verdict.status.value),
            "message": verdict.message,
            "verification_source": verdict.verification_source,
            "fixed_reference": verdict.fixed_reference,
            "checks_performed": list(verdict.checks_performed),
        }
    )


async def verify_reference(
    reference: Reference,
    on_status_update: Optional[StatusCallback] = None,
    performed_checks: Optional[set[str]] = None,
    *,
    verifier: Verifier,
) -> Reference:
    """Verify one reference. Always returns a reference in a terminal status."""
    try:
        verdict = await verifier.verify(
            reference,
            on_status_update=on_status_update,
            performed_checks=performed_checks,
        )
    except Exception as e:
        logger.exception("ref %s: verification crashed", reference.id)
        return reference.model_copy(
            update={
                "status": ReferenceStatus.ERROR,
                "message": f"Verification failed: {e}",
                "checks_performed": sorted(performed_checks or []),
            }
        )
    return apply_verdict(reference, verdict)


def compute_stats(references: list[Reference]) -> dict[str, int]:
    status_counts = Counter(r.status.value for r in references)
    stats = {"total": len(references)}
    for status in ReferenceStatus:
        if status is ReferenceStatus.PENDING and not status_counts.get(status.value):
            continue
        stats[status.value] = status_counts.get(status.value, 0)
    return stats
