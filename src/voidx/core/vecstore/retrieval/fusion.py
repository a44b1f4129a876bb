"""Score fusion for hybrid retrieval.

Per indexable field, dense and sparse hit lists are combined with a linear
weighted sum of max-normalized scores. Results of several fields are merged
by keeping the best score of every id, then thresholded and ranked.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..core.schemas import ScoredDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hit:
    """One row returned by a single ANN request."""

    id: int
    score: float
    fields: Dict[str, Any] = field(default_factory=dict)


def max_normalize(hits: Sequence[Hit]) -> Dict[int, float]:
    """Divide every score by the list maximum.

    A list whose maximum is not positive contributes 0 for all its ids.
    """
    if not hits:
        return {}
    max_score = max(h.score for h in hits)
    if max_score <= 0:
        logger.debug(
            "Score normalization skipped: list maximum is %f. Returning zeros.",
            max_score,
        )
        return {h.id: 0.0 for h in hits}
    return {h.id: h.score / max_score for h in hits}


def fuse_field(
    field_name: str,
    dense_hits: Sequence[Hit],
    sparse_hits: Optional[Sequence[Hit]],
    dense_weight: float,
) -> List[ScoredDocument]:
    """Score the hits of one indexable field.

    Args:
        field_name: Indexable field the hits belong to
        dense_hits: Hits of the ANN request on ``dense_F``
        sparse_hits: Hits on ``sparse_F``; None for dense-only fields
        dense_weight: Weight α of the normalized dense score

    Returns:
        One document per distinct id. Dense-only fields keep the raw dense
        score; hybrid fields get ``α·d/max_d + (1-α)·s/max_s`` with 0 for an
        id absent from a list.
    """
    dense_raw = {h.id: h.score for h in dense_hits}

    if sparse_hits is None:
        return [
            ScoredDocument(
                id=h.id,
                score=h.score,
                fields=h.fields,
                matched_field=field_name,
                dense_score=h.score,
            )
            for h in dense_hits
        ]

    sparse_raw = {h.id: h.score for h in sparse_hits}
    dense_norm = max_normalize(dense_hits)
    sparse_norm = max_normalize(sparse_hits)

    entities: Dict[int, Dict[str, Any]] = {}
    for h in list(dense_hits) + list(sparse_hits):
        entities.setdefault(h.id, h.fields)

    return [
        ScoredDocument(
            id=doc_id,
            score=dense_weight * dense_norm.get(doc_id, 0.0)
            + (1.0 - dense_weight) * sparse_norm.get(doc_id, 0.0),
            fields=fields,
            matched_field=field_name,
            dense_score=dense_raw.get(doc_id),
            sparse_score=sparse_raw.get(doc_id),
        )
        for doc_id, fields in entities.items()
    ]


def merge_fields(
    per_field: Iterable[Sequence[ScoredDocument]],
) -> List[ScoredDocument]:
    """Keep every id once, with its maximum score across fields.

    On equal scores the field searched first wins.
    """
    best: Dict[int, ScoredDocument] = {}
    for docs in per_field:
        for doc in docs:
            current = best.get(doc.id)
            if current is None or doc.score > current.score:
                best[doc.id] = doc
    return list(best.values())


def rank_results(
    docs: Iterable[ScoredDocument],
    top_k: int,
    score_threshold: Optional[float] = None,
) -> List[ScoredDocument]:
    """Threshold, order by score descending then id ascending, and cut."""
    kept = [
        d for d in docs if score_threshold is None or d.score >= score_threshold
    ]
    kept.sort(key=lambda d: (-d.score, d.id))
    return kept[:top_k]
