"""Deterministic merge of structured and heuristic metrics.

Structured facts are inserted first, so for any normalized name a tagged
fact always beats a pattern match. Within one source the first metric in
document order wins. Confidence never decides.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sec_metrics.models import ExtractedMetric, MergeLoser, MetricSet, normalize_name

log = logging.getLogger(__name__)

STRUCTURED_PRECEDENCE = "structured_precedence"
DOCUMENT_ORDER = "document_order"


def merge_metrics(
    structured: Iterable[ExtractedMetric],
    heuristic: Iterable[ExtractedMetric],
) -> MetricSet:
    """Merge two extractions into a MetricSet with one winner per name.

    Every discarded metric is kept in ``losers`` with the winner's source
    path and the reason it lost.
    """
    winners: dict[str, ExtractedMetric] = {}
    losers: list[MergeLoser] = []

    for metric in structured:
        _insert(winners, losers, metric, from_structured=True)
    structured_count = len(winners)
    for metric in heuristic:
        _insert(winners, losers, metric, from_structured=False)

    log.debug(
        "Merged %d structured + %d heuristic winners, %d losers",
        structured_count, len(winners) - structured_count, len(losers),
    )
    return MetricSet(winners=winners, losers=losers)


def _insert(
    winners: dict[str, ExtractedMetric],
    losers: list[MergeLoser],
    metric: ExtractedMetric,
    from_structured: bool,
) -> None:
    key = normalize_name(metric.name)
    current = winners.get(key)
    if current is None:
        winners[key] = metric
        return

    if not from_structured and current.is_structured:
        reason = STRUCTURED_PRECEDENCE
    else:
        reason = DOCUMENT_ORDER
    losers.append(MergeLoser(
        normalized_name=key,
        metric=metric,
        winner_source_path=current.source_path,
        reason=reason,
    ))
    log.debug("%s (%s) lost to %s: %s", key, metric.source_path, current.source_path, reason)
