from __future__ import annotations

import logging
from collections import deque
from typing import Sequence

from searchgate.app.saturation.contracts import (
    GAIN_SAMPLE_SIZE,
    Recommendation,
    ResultRecord,
    SaturationCriteria,
    SaturationMetrics,
    SaturationReport,
    SearchStats,
)
from searchgate.app.saturation.scoring import (
    assess_novelty,
    clamp_unit,
    content_fingerprint,
    target_keywords,
)

LOGGER = logging.getLogger(__name__)

HIGH_RELEVANCE = 0.7
HIGH_NOVELTY = 0.5
LOW_EFFICIENCY = 0.3
LOW_INFORMATION_GAIN = 0.2
SATURATION_QUORUM = 2

SATURATION_WEIGHTS = {
    "duplicate_rate": 0.30,
    "novelty_score": 0.25,
    "source_overlap_rate": 0.20,
    "information_gain_rate": 0.15,
    "search_efficiency": 0.10,
}


class SaturationGate:
    """Decides after each round whether a research branch has stopped paying off.

    Identifier, fingerprint and source sets cover the whole run; relevance trends
    are read from a bounded trailing window. Each call must receive the complete
    batch for one round.
    """

    def __init__(self, criteria: SaturationCriteria) -> None:
        self._criteria = criteria
        self._seen_identifiers: set[str] = set()
        self._seen_fingerprints: set[str] = set()
        self._seen_sources: set[str] = set()
        self._history: list[ResultRecord] = []
        self._window: deque[ResultRecord] = deque(maxlen=criteria.window_size)
        self._rounds = 0

    @property
    def criteria(self) -> SaturationCriteria:
        return self._criteria

    def detect_saturation(
        self,
        new_results: Sequence[ResultRecord],
        branch_target: str,
    ) -> SaturationReport:
        batch = list(new_results)
        for record in batch:
            record.content_fingerprint = content_fingerprint(record.raw_content)

        duplicate_rate = self._duplicate_rate(batch)
        source_overlap_rate = self._source_overlap_rate(batch)
        self._absorb(batch)

        novelty_score = _novelty_score(batch, branch_target)
        metrics = SaturationMetrics(
            duplicate_rate=duplicate_rate,
            novelty_score=novelty_score,
            source_overlap_rate=source_overlap_rate,
            information_gain_rate=self._information_gain_rate(),
            search_efficiency=_search_efficiency(batch),
        )

        breaches = self._breaches(metrics)
        is_saturated = (
            len(breaches) >= SATURATION_QUORUM
            and len(self._history) >= self._criteria.min_results
        )
        recommendation = _recommend(metrics, is_saturated)
        report = SaturationReport(
            is_saturated=is_saturated,
            saturation_level=saturation_level(metrics),
            metrics=metrics,
            recommendation=recommendation,
            reasoning=_reasoning(breaches, is_saturated),
            next_actions=_next_actions(metrics, recommendation),
        )
        LOGGER.debug(
            "Saturation assessed",
            extra={
                "round": self._rounds,
                "batch_size": len(batch),
                "recommendation": recommendation.value,
                "saturation_level": round(report.saturation_level, 4),
            },
        )
        return report

    def reset(self) -> None:
        self._seen_identifiers.clear()
        self._seen_fingerprints.clear()
        self._seen_sources.clear()
        self._history.clear()
        self._window.clear()
        self._rounds = 0

    def get_search_stats(self) -> SearchStats:
        total = len(self._history)
        average = (
            sum(record.relevance_score for record in self._history) / total
            if total
            else 0.0
        )
        return SearchStats(
            total_rounds=self._rounds,
            total_results=total,
            unique_identifiers=len(self._seen_identifiers),
            unique_sources=len(self._seen_sources),
            average_relevance=average,
        )

    def _absorb(self, batch: list[ResultRecord]) -> None:
        self._rounds += 1
        for record in batch:
            self._seen_identifiers.add(record.identifier)
            self._seen_fingerprints.add(record.content_fingerprint or "")
            self._seen_sources.add(record.source_name)
            self._history.append(record)
            self._window.append(record)

    def _duplicate_rate(self, batch: list[ResultRecord]) -> float:
        if not batch:
            return 0.0
        duplicates = sum(
            1
            for record in batch
            if record.content_fingerprint in self._seen_fingerprints
            or record.identifier in self._seen_identifiers
        )
        return duplicates / len(batch)

    def _source_overlap_rate(self, batch: list[ResultRecord]) -> float:
        sources = {record.source_name for record in batch}
        if not sources:
            return 0.0
        overlap = len(sources.intersection(self._seen_sources))
        return overlap / len(sources)

    def _information_gain_rate(self) -> float:
        # Warm-up: too little history to compare recent against earlier relevance.
        if len(self._history) <= GAIN_SAMPLE_SIZE:
            return 1.0
        recent = list(self._window)[-GAIN_SAMPLE_SIZE:]
        earlier = self._history[:-GAIN_SAMPLE_SIZE]
        recent_mean = _mean_relevance(recent)
        earlier_mean = _mean_relevance(earlier)
        return clamp_unit((recent_mean - earlier_mean + 1) / 2)

    def _breaches(self, metrics: SaturationMetrics) -> list[str]:
        criteria = self._criteria
        breaches: list[str] = []
        if metrics.duplicate_rate >= criteria.duplicate_threshold:
            breaches.append(f"duplicate rate too high ({metrics.duplicate_rate:.1%})")
        if metrics.novelty_score <= criteria.novelty_threshold:
            breaches.append(f"novelty too low ({metrics.novelty_score:.1%})")
        if metrics.source_overlap_rate >= criteria.source_overlap_limit:
            breaches.append(
                f"source overlap too high ({metrics.source_overlap_rate:.1%})"
            )
        if metrics.information_gain_rate <= criteria.information_gain_threshold:
            breaches.append(
                f"information gain too low ({metrics.information_gain_rate:.1%})"
            )
        if len(self._history) >= criteria.max_results:
            breaches.append(
                f"result budget reached ({len(self._history)}/{criteria.max_results})"
            )
        return breaches


def saturation_level(metrics: SaturationMetrics) -> float:
    weights = SATURATION_WEIGHTS
    return (
        metrics.duplicate_rate * weights["duplicate_rate"]
        + (1 - metrics.novelty_score) * weights["novelty_score"]
        + metrics.source_overlap_rate * weights["source_overlap_rate"]
        + (1 - metrics.information_gain_rate) * weights["information_gain_rate"]
        + (1 - metrics.search_efficiency) * weights["search_efficiency"]
    )


def _novelty_score(batch: list[ResultRecord], branch_target: str) -> float:
    if not batch:
        return 0.0
    keywords = target_keywords(branch_target)
    total = 0.0
    for record in batch:
        record.novelty_score = assess_novelty(record.raw_content, keywords)
        total += record.novelty_score
    return total / len(batch)


def _search_efficiency(batch: list[ResultRecord]) -> float:
    if not batch:
        return 0.0
    high_quality = sum(
        1
        for record in batch
        if record.relevance_score > HIGH_RELEVANCE
        and (record.novelty_score or 0.0) > HIGH_NOVELTY
    )
    return high_quality / len(batch)


def _mean_relevance(records: Sequence[ResultRecord]) -> float:
    if not records:
        return 0.0
    return sum(record.relevance_score for record in records) / len(records)


def _recommend(metrics: SaturationMetrics, is_saturated: bool) -> Recommendation:
    if is_saturated:
        return Recommendation.STOP
    if (
        metrics.search_efficiency < LOW_EFFICIENCY
        or metrics.information_gain_rate < LOW_INFORMATION_GAIN
    ):
        return Recommendation.ADJUST_STRATEGY
    return Recommendation.CONTINUE


def _reasoning(breaches: list[str], is_saturated: bool) -> str:
    if is_saturated:
        return f"Search saturated: {', '.join(breaches)}"
    if breaches:
        return (
            "Search can continue, saturation quorum not met: " + ", ".join(breaches)
        )
    return "Search can continue: information gain remains"


def _next_actions(
    metrics: SaturationMetrics,
    recommendation: Recommendation,
) -> list[str]:
    if recommendation == Recommendation.STOP:
        return [
            "Stop searching this branch",
            "Consolidate and analyze the collected results",
            "Move on to the next research branch",
        ]
    if recommendation == Recommendation.ADJUST_STRATEGY:
        actions: list[str] = []
        if metrics.duplicate_rate > 0.5:
            actions.append("Rephrase the query to avoid repeated sources")
        if metrics.novelty_score < 0.3:
            actions.append("Broaden the query to reach new sources")
        if metrics.search_efficiency < LOW_EFFICIENCY:
            actions.append("Refine query keywords to raise result quality")
        if metrics.information_gain_rate < LOW_INFORMATION_GAIN:
            actions.append("Switch query strategy, relevance is trending down")
        return actions
    return [
        "Continue with the current search strategy",
        "Monitor result quality and efficiency",
    ]
