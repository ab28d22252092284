"""Entry scenario scoring."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from core.config import ConfigStore, Scenario, StrategyConfig
from services.strategy.types import (
    Direction,
    EntryDecision,
    EntryFilterResult,
    ScenarioEvaluation,
)

log = logging.getLogger("scalper.scenarios")

NO_SCENARIO_PASSED = "NO_SCENARIO_PASSED"

_CATEGORY_LABELS = {
    "ema": "EMA",
    "futureAndVolume": "FV",
    "candlestick": "CS",
    "momentum": "M",
}


def _fmt(value: float) -> str:
    return f"{value:g}"


def evaluate_scenario(
    scenario: Scenario,
    quality_score: float,
    category_scores: Mapping[str, float],
    default_min_quality: float,
) -> ScenarioEvaluation:
    """Score a single scenario against the direction-specific category scores."""

    requirements = scenario.requirements
    threshold = (
        requirements.min_quality_score
        if requirements.min_quality_score is not None
        else default_min_quality
    )
    quality_ok = threshold <= 0 or quality_score >= threshold
    minimums = requirements.category_minimums()

    if not minimums:
        reason = (
            f"Quality {_fmt(quality_score)} >= {_fmt(threshold)}"
            if quality_ok
            else f"Quality {_fmt(quality_score)} < {_fmt(threshold)}"
        )
        return ScenarioEvaluation(scenario.name, quality_ok, float(quality_score), reason)

    failures: List[str] = []
    if not quality_ok:
        failures.append(f"Quality: {_fmt(quality_score)}/{_fmt(threshold)}")
    for category, minimum in minimums.items():
        value = float(category_scores.get(category, 0))
        if value < minimum:
            failures.append(f"{_CATEGORY_LABELS[category]}: {_fmt(value)}/{_fmt(minimum)}")
    if failures:
        return ScenarioEvaluation(scenario.name, False, 0.0, ", ".join(failures))
    return ScenarioEvaluation(
        scenario.name, True, float(quality_score), "All scenario requirements met"
    )


class ScenarioEvaluator:
    """Pick the best-scoring configured entry scenario for a tick."""

    def __init__(self, config_store: ConfigStore) -> None:
        self.config_store = config_store

    def evaluate(
        self,
        quality_score: float,
        filter_result: EntryFilterResult,
        direction: Optional[Direction],
        category_scores_by_direction: Mapping[Direction, Mapping[str, float]],
        *,
        config: Optional[StrategyConfig] = None,
    ) -> EntryDecision:
        cfg = config if config is not None else self.config_store.current()
        scores: Dict[str, float] = dict(
            category_scores_by_direction.get(direction, {}) if direction is not None else {}
        )
        scenarios = cfg.active_scenarios()

        if not filter_result.conditions_met:
            rejected = tuple(
                ScenarioEvaluation(s.name, False, 0.0, filter_result.reason) for s in scenarios
            )
            return EntryDecision(
                should_entry=False,
                scenario_name=None,
                confidence=0.0,
                quality_score=quality_score,
                category_scores=scores,
                market_direction=direction,
                reason=filter_result.reason,
                evaluations=rejected,
            )

        evaluations = tuple(
            evaluate_scenario(s, quality_score, scores, cfg.scoring.min_quality_score)
            for s in scenarios
        )
        best: Optional[ScenarioEvaluation] = None
        for evaluation in evaluations:
            if evaluation.passed and (best is None or evaluation.score > best.score):
                best = evaluation

        if best is None or direction is None:
            reason = NO_SCENARIO_PASSED if best is None else "No dominant direction"
            log.debug(
                "scenarios.rejected",
                extra={"quality_score": quality_score, "reason": reason},
            )
            return EntryDecision(
                should_entry=False,
                scenario_name=None,
                confidence=0.0,
                quality_score=quality_score,
                category_scores=scores,
                market_direction=direction,
                reason=reason,
                evaluations=evaluations,
            )

        log.info(
            "scenarios.selected",
            extra={
                "scenario": best.name,
                "direction": direction.value,
                "quality_score": quality_score,
            },
        )
        return EntryDecision(
            should_entry=True,
            scenario_name=best.name,
            confidence=best.score,
            quality_score=quality_score,
            category_scores=scores,
            market_direction=direction,
            reason=f"Scenario {best.name} passed",
            evaluations=evaluations,
        )


__all__ = ["NO_SCENARIO_PASSED", "ScenarioEvaluator", "evaluate_scenario"]
