"""Drop unusable references and collapse duplicates before verification.

Duplicate detection is an approximate heuristic: titles must be at least
``title_threshold`` similar (rapidfuzz ratio on normalized text, so 100
means equal after lowercasing and stripping punctuation) and the author
lists must mostly agree.
"""

import logging

from rapidfuzz import fuzz, utils

from .models import Reference

logger = logging.getLogger(__name__)

AUTHOR_OVERLAP = 0.7
TITLE_THRESHOLD = 100.0


def authors_similar(
    authors1: list[str], authors2: list[str], overlap: float = AUTHOR_OVERLAP
) -> bool:
    """At least ``overlap`` of the smaller author set appears in the other.

    Lists whose lengths differ by more than one are never similar.
    """
    if abs(len(authors1) - len(authors2)) > 1:
        return False

    set1 = {a.lower().strip() for a in authors1}
    set2 = {a.lower().strip() for a in authors2}
    matches = len(set1 & set2)
    return matches >= min(len(set1), len(set2)) * overlap


def titles_similar(title1: str, title2: str, threshold: float = TITLE_THRESHOLD) -> bool:
    score = fuzz.ratio(title1, title2, processor=utils.default_process)
    return score >= threshold


def filter_invalid_references(
    refs: list[Reference],
    author_overlap: float = AUTHOR_OVERLAP,
    title_threshold: float = TITLE_THRESHOLD,
) -> list[Reference]:
    """Keep references with a title and authors, first occurrence of duplicates."""
    valid = [r for r in refs if r.authors and r.title and r.title.strip()]

    unique: list[Reference] = []
    for ref in valid:
        duplicate_of = next(
            (
                kept
                for kept in unique
                if titles_similar(kept.title, ref.title, title_threshold)
                and authors_similar(kept.authors, ref.authors, author_overlap)
            ),
            None,
        )
        if duplicate_of is not None:
            logger.debug("ref %s: duplicate of %s, dropped", ref.id, duplicate_of.id)
            continue
        unique.append(ref)

    dropped = len(refs) - len(unique)
    if dropped:
        logger.info(
            "Filtered %d references (%d without title/authors, %d duplicates)",
            dropped,
            len(refs) - len(valid),
            len(valid) - len(unique),
        )
    return unique
