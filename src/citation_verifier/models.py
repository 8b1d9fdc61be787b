"""Pydantic data models shared across the verification pipeline.

These models serve double duty:
1. Data validation and serialization of reference files and results
2. Structured output schemas for Ollama (via model_json_schema())
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- References ---


class ReferenceType(str, Enum):
    ARTICLE = "article"
    BOOK = "book"
    INBOOK = "inbook"
    INPROCEEDINGS = "inproceedings"
    PROCEEDINGS = "proceedings"
    THESIS = "thesis"
    REPORT = "report"
    WEBPAGE = "webpage"


class ReferenceStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    NEEDS_HUMAN = "needs-human"
    ERROR = "error"


class Reference(BaseModel):
    """A single bibliographic reference and its verification outcome.

    Field aliases follow the JSON produced by the extraction step
    (``DOI``, ``arxivId``, ``PMID``, ``ISBN``); either spelling is accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Opaque key, unique within a session")
    title: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    year: Optional[str] = None
    journal: Optional[str] = None
    publisher: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    conference: Optional[str] = None
    doi: Optional[str] = Field(None, alias="DOI")
    arxiv_id: Optional[str] = Field(None, alias="arxivId")
    pmid: Optional[str] = Field(None, alias="PMID")
    isbn: Optional[str] = Field(None, alias="ISBN")
    url: Optional[str] = None
    date_of_access: Optional[str] = None
    type: Optional[ReferenceType] = None
    raw: str = Field(description="Original citation text")

    # Set by the verification core only
    status: ReferenceStatus = ReferenceStatus.PENDING
    message: Optional[str] = None
    verification_source: Optional[str] = None
    fixed_reference: Optional[str] = Field(None, alias="fixedReference")
    checks_performed: list[str] = Field(
        default_factory=list, alias="checksPerformed"
    )

    @field_validator("year", "volume", "issue", "pages", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator("authors", mode="before")
    @classmethod
    def _coerce_authors(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type_is_none(cls, value: Any) -> Any:
        if value is None or value in ReferenceType._value2member_map_:
            return value
        return None


class ExtractionResult(BaseModel):
    """Input file format: parsed references from one source document."""

    source: str = ""
    references: list[Reference]


class VerificationResult(BaseModel):
    """Output file format: verified references with stats."""

    source: str = ""
    references: list[Reference]
    stats: dict[str, int] = Field(
        default_factory=dict,
        description='e.g. {"total": 16, "verified": 12, "unverified": 3, ...}',
    )


# --- Adapters ---


class AdapterResult(BaseModel):
    """Normalized outcome of one external source check."""

    is_valid: bool
    message: str
    source: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class CandidateRecord(BaseModel):
    """A bibliographic record returned by a metadata search."""

    title: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    year: Optional[str] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    doi: Optional[str] = None

    @classmethod
    def from_crossref(cls, item: dict) -> "CandidateRecord":
        """Normalize a CrossRef work item."""
        authors = []
        for author in item.get("author", []):
            name_parts = [author.get("given", ""), author.get("family", "")]
            name = " ".join(p for p in name_parts if p)
            if name:
                authors.append(name)

        titles = item.get("title") or []
        journals = item.get("container-title") or []
        year = None
        for key in ("published", "published-print", "published-online", "issued"):
            parts = (item.get(key) or {}).get("date-parts") or [[None]]
            if parts and parts[0] and parts[0][0]:
                year = str(parts[0][0])
                break

        return cls(
            title=titles[0] if titles else None,
            authors=authors,
            year=year,
            journal=journals[0] if journals else None,
            volume=item.get("volume"),
            issue=item.get("issue"),
            doi=item.get("DOI"),
        )


class MatchScore(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    matched_fields: list[str] = Field(default_factory=list)


# --- Decision step ---


class ToolCallRequest(BaseModel):
    """A request from the decision step to invoke one adapter."""

    kind: Literal["tool_call"] = "tool_call"
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    call_id: str


class FinalDecision(BaseModel):
    """Decision step output with no tool call: a final answer attempt."""

    kind: Literal["final"] = "final"
    content: str = ""


DecisionResult = Annotated[
    Union[FinalDecision, ToolCallRequest], Field(discriminator="kind")
]


class ChatMessage(BaseModel):
    """One entry of the conversation passed back to the decision step."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: Optional[list[ToolCallRequest]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


class AttemptState(str, Enum):
    INIT = "init"
    TOOL_PENDING = "tool_pending"
    TOOL_RESOLVED = "tool_resolved"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"


class VerificationAttempt(BaseModel):
    """One run of the state machine for one reference. Never persisted."""

    iteration: int = 0
    history: list[ChatMessage] = Field(default_factory=list)
    last_tool_call_id: Optional[str] = None
    pending_tool_call: Optional[ToolCallRequest] = None
    state: AttemptState = AttemptState.INIT
    checks_performed: list[str] = Field(default_factory=list)
    tool_results: dict[str, AdapterResult] = Field(default_factory=dict)
    last_failure: Optional[str] = None

    def record_check(self, display_name: str) -> None:
        if display_name not in self.checks_performed:
            self.checks_performed.append(display_name)

    @property
    def has_positive_signal(self) -> bool:
        return any(r.is_valid for r in self.tool_results.values())


# --- Verdicts ---


class VerdictStatus(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    NEEDS_HUMAN = "needs-human"
    ERROR = "error"


class FinalVerdictPayload(BaseModel):
    """Schema of the JSON object the decision step emits as its answer."""

    status: VerdictStatus
    message: str
    reference: str
    checks_performed: list[str] = Field(default_factory=list)


class Verdict(BaseModel):
    """Final status and explanation for one reference."""

    status: VerdictStatus
    message: str
    fixed_reference: Optional[str] = None
    checks_performed: list[str] = Field(default_factory=list)
    verification_source: Optional[str] = None
    repaired: bool = Field(
        False, description="Final JSON was missing fields and filled with defaults"
    )
    raw_content: Optional[str] = Field(
        None, description="Unparseable decision output kept for manual inspection"
    )
    iterations: int = 0


class SearchClassification(BaseModel):
    """Structured LLM judgement of web search results."""

    is_valid: bool
    message: str = Field(
        description="How the search results verify or not the reference, with links"
    )


# --- Batch scheduling ---


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ReferenceList(BaseModel):
    """References belonging to one input file."""

    name: str
    references: list[Reference]


class BatchJob(BaseModel):
    """One unit tracked by the scheduler (one per input file)."""

    id: str
    status: JobStatus = JobStatus.PENDING
    payload: ReferenceList
    high_accuracy_mode: bool = False
    results: list[Reference] = Field(default_factory=list)
    error: Optional[str] = None


class ProgressEvent(BaseModel):
    id: str
    status: Literal["processing", "complete", "error"]
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
