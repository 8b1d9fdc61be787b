"""Match confidence between a reference and a candidate metadata record.

Weights are additive and independent. A field missing on either side
contributes nothing; it is never penalized.
"""

from typing import Optional, Sequence

from .models import CandidateRecord, MatchScore, Reference

WEIGHTS = {
    "title": 0.30,
    "authors": 0.20,
    "year": 0.20,
    "journal": 0.15,
    "volume": 0.10,
    "issue": 0.05,
}

MATCH_THRESHOLD = 0.5


def _norm(value: Optional[str]) -> str:
    return " ".join(str(value).lower().split()) if value else ""


def _contains_either(a: Optional[str], b: Optional[str]) -> bool:
    a, b = _norm(a), _norm(b)
    if not a or not b:
        return False
    return a in b or b in a


def _equal(a: Optional[str], b: Optional[str]) -> bool:
    a, b = _norm(a), _norm(b)
    return bool(a) and a == b


def author_overlap(ref_authors: Sequence[str], candidate_authors: Sequence[str]) -> float:
    """Fraction of reference authors found among the candidate's authors.

    A reference author matches when it contains, or is contained in, some
    candidate author name (case-insensitive).
    """
    ref_names = [_norm(a) for a in ref_authors if _norm(a)]
    cand_names = [_norm(a) for a in candidate_authors if _norm(a)]
    if not ref_names or not cand_names:
        return 0.0
    found = sum(
        1 for r in ref_names if any(r in c or c in r for c in cand_names)
    )
    return found / len(ref_names)


def score_candidate(reference: Reference, candidate: CandidateRecord) -> MatchScore:
    score = 0.0
    matched: list[str] = []

    if _contains_either(reference.title, candidate.title):
        score += WEIGHTS["title"]
        matched.append("title")

    overlap = author_overlap(reference.authors, candidate.authors)
    if overlap > 0:
        score += WEIGHTS["authors"] * overlap
        matched.append("authors")

    if _equal(reference.year, candidate.year):
        score += WEIGHTS["year"]
        matched.append("year")

    if _contains_either(reference.journal, candidate.journal):
        score += WEIGHTS["journal"]
        matched.append("journal")

    if _equal(reference.volume, candidate.volume):
        score += WEIGHTS["volume"]
        matched.append("volume")

    if _equal(reference.issue, candidate.issue):
        score += WEIGHTS["issue"]
        matched.append("issue")

    return MatchScore(score=min(round(score, 6), 1.0), matched_fields=matched)


def select_best(
    reference: Reference, candidates: Sequence[CandidateRecord]
) -> tuple[Optional[CandidateRecord], MatchScore]:
    """Highest-scoring candidate; ties keep the earlier one.

    Input order is the source's own relevance ranking, so the strict ``>``
    comparison is what keeps selection stable.
    """
    best: Optional[CandidateRecord] = None
    best_score = MatchScore(score=0.0)
    for candidate in candidates:
        result = score_candidate(reference, candidate)
        if best is None or result.score > best_score.score:
            best, best_score = candidate, result
    return best, best_score
