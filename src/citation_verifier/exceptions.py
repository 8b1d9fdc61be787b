"""Exception types for the verification core.

Adapters never raise these to the state machine; they are used inside
adapters (transient signals to retry), at the decision-step boundary, and
for configuration problems.
"""

from typing import Any


class VerifierError(Exception):
    """Base exception for citation-verifier errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(VerifierError):
    """Missing or invalid configuration, e.g. no search API keys."""


class RateLimitError(VerifierError):
    """A third party explicitly asked us to slow down (HTTP 429)."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class DecisionStepError(VerifierError):
    """The decision-making LLM call failed (timeout, connection, server)."""


class MalformedDecisionError(DecisionStepError):
    """The decision step returned a shape we cannot act on.

    Examples: a tool call without a function name, or arguments that are
    not a JSON object.
    """

    def __init__(self, message: str, raw_content: str | None = None):
        super().__init__(message, {"raw_content": raw_content})
        self.raw_content = raw_content


class RetryExhaustedError(VerifierError):
    """A retried operation failed on every attempt."""

    def __init__(self, message: str, last_error: BaseException | None = None):
        super().__init__(message, {"last_error": repr(last_error)})
        self.last_error = last_error
