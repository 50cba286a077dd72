"""Pure verification engine: task code -> rule -> (status, points, notes).

`verify` never touches storage. Evidence and signals may be dicts (as returned by
`ProgressStore`) or the dataclasses in `progress_types`; both are read through
`field_of`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from .period import as_aware
from .progress_types import EVIDENCE_KINDS, SIGNAL_MEASURES, BonusTier, VerificationOutcome, _parse_instant

EvidencePredicate = Callable[[Any], bool]
SignalPredicate = Callable[[Any], bool]


def field_of(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


@dataclass(frozen=True, slots=True)
class VerificationWindow:
    """Inclusive instant range signals must fall into."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if as_aware(self.end) < as_aware(self.start):
            raise ValueError("VerificationWindow.end must not precede start.")

    def contains(self, instant: datetime) -> bool:
        value = as_aware(instant)
        return as_aware(self.start) <= value <= as_aware(self.end)


def parse_bonus_tiers(raw: Iterable[Any] | None) -> list[BonusTier]:
    tiers: list[BonusTier] = []
    for item in raw or []:
        if isinstance(item, BonusTier):
            tiers.append(item)
        elif isinstance(item, Mapping):
            tiers.append(BonusTier.from_dict(item))
    return tiers


def max_points(base_points: int, tiers: Iterable[BonusTier]) -> int:
    return base_points + sum(tier.points for tier in tiers)


def signals_in_window(signals: Iterable[Any], window: VerificationWindow) -> list[Any]:
    selected: list[Any] = []
    for signal in signals:
        try:
            happened_at = _parse_instant(field_of(signal, "happened_at"))
        except ValueError:
            continue
        if window.contains(happened_at):
            selected.append(signal)
    return selected


def measure_signals(
    signals: Iterable[Any],
    *,
    measure: str,
    kinds: Iterable[str] = (),
    window: VerificationWindow | None = None,
    predicate: SignalPredicate | None = None,
) -> int:
    """Count matching signals, distinct actors, or distinct active days."""
    kind_set = {str(kind).upper() for kind in kinds}
    matched = [
        signal
        for signal in signals
        if (not kind_set or str(field_of(signal, "kind") or "").upper() in kind_set)
        and (predicate is None or predicate(signal))
    ]
    if measure == "count":
        return len(matched)
    if measure == "actors":
        return len({actor for actor in (field_of(signal, "actor") for signal in matched) if actor})
    if measure == "days":
        zone = window.start.tzinfo if window is not None else None
        days = set()
        for signal in matched:
            happened_at = _parse_instant(field_of(signal, "happened_at"))
            days.add((happened_at.astimezone(zone) if zone is not None else happened_at).date())
        return len(days)
    raise ValueError(f"Unknown signal measure: {measure}")


def apply_bonus_tiers(
    tiers: Sequence[BonusTier],
    signals: Sequence[Any],
    window: VerificationWindow,
) -> tuple[int, list[str]]:
    points = 0
    notes: list[str] = []
    for tier in tiers:
        observed = measure_signals(signals, measure=tier.measure, kinds=tier.kinds, window=window)
        if observed >= tier.at_least:
            points += tier.points
            notes.append(tier.note or f"+{tier.points} points for {observed} {tier.measure}")
    return points, notes


def evidence_kinds_present(evidence: Iterable[Any]) -> set[str]:
    return {str(field_of(item, "kind") or "").upper() for item in evidence}


def best_fraction(evidence: Iterable[Any], fractions: Mapping[str, float]) -> tuple[float, str | None]:
    best_value = 0.0
    best_kind: str | None = None
    for kind in sorted(evidence_kinds_present(evidence)):
        value = float(fractions.get(kind, 0.0))
        if value > best_value:
            best_value, best_kind = value, kind
    return best_value, best_kind


def _floor_points(base_points: int, fraction: float) -> int:
    return max(0, math.floor(base_points * fraction))


def _bounded(status: str, points: int, notes: list[str], ceiling: int) -> VerificationOutcome:
    return VerificationOutcome(status=status, points=max(0, min(points, ceiling)), notes=notes)  # type: ignore[arg-type]


class Rule(Protocol):
    code: str

    def evaluate(
        self,
        evidence: Sequence[Any],
        signals: Sequence[Any],
        window: VerificationWindow,
        *,
        base_points: int,
        bonus_rules: Sequence[Any] | None = None,
    ) -> VerificationOutcome: ...


@dataclass(slots=True)
class SignalThresholdRule:
    """Evidence corroborated by signals measured within the period window.

    `measure` picks what is counted: raw signal count, distinct actors, or distinct
    active days (in the window's time zone). Without any matching signal the rule
    falls back to per-kind evidence fractions; `fallback_signal_kinds` give a
    fixed partial credit when only a weaker signal was seen.
    """

    code: str
    signal_kinds: tuple[str, ...]
    required: int
    measure: str = "count"
    evidence_fractions: dict[str, float] = field(default_factory=dict)
    default_bonus: tuple[dict[str, Any], ...] = ()
    evidence_predicate: EvidencePredicate | None = None
    predicate_note: str = "Submitted evidence does not match what this task asks for."
    signal_predicate: SignalPredicate | None = None
    fallback_signal_kinds: tuple[str, ...] = ()
    fallback_fraction: float = 0.0
    label: str = "signals"

    def __post_init__(self) -> None:
        if self.measure not in SIGNAL_MEASURES:
            raise ValueError(f"SignalThresholdRule.measure must be one of: {', '.join(SIGNAL_MEASURES)}.")
        if self.required < 1:
            raise ValueError("SignalThresholdRule.required must be >= 1.")
        unknown = [kind for kind in self.evidence_fractions if kind not in EVIDENCE_KINDS]
        if unknown:
            raise ValueError(f"Unknown evidence kinds in fractions: {', '.join(unknown)}.")

    def evaluate(
        self,
        evidence: Sequence[Any],
        signals: Sequence[Any],
        window: VerificationWindow,
        *,
        base_points: int,
        bonus_rules: Sequence[Any] | None = None,
    ) -> VerificationOutcome:
        tiers = parse_bonus_tiers(bonus_rules if bonus_rules else self.default_bonus)
        ceiling = max_points(base_points, tiers)
        if not evidence:
            return VerificationOutcome(status="NOT_STARTED", points=0, notes=["No evidence submitted."])

        in_window = signals_in_window(signals, window)
        observed = measure_signals(
            in_window,
            measure=self.measure,
            kinds=self.signal_kinds,
            window=window,
            predicate=self.signal_predicate,
        )

        if observed >= self.required:
            bonus, bonus_notes = apply_bonus_tiers(tiers, in_window, window)
            notes = [f"{observed} {self.label} within period (required {self.required})."]
            return _bounded("VERIFIED", base_points + bonus, notes + bonus_notes, ceiling)

        if observed > 0:
            points = _floor_points(base_points, observed / self.required)
            notes = [f"{observed}/{self.required} {self.label} within period."]
            return _bounded("PARTIALLY_VERIFIED", points, notes, ceiling)

        if self.fallback_signal_kinds:
            weaker = measure_signals(in_window, measure="count", kinds=self.fallback_signal_kinds, window=window)
            if weaker > 0:
                points = _floor_points(base_points, self.fallback_fraction)
                kinds = ", ".join(self.fallback_signal_kinds)
                return _bounded("PARTIALLY_VERIFIED", points, [f"{weaker} {kinds} signal(s) seen; awaiting completion."], ceiling)

        qualifying = [item for item in evidence if self.evidence_predicate is None or self.evidence_predicate(item)]
        if not qualifying:
            return _bounded("SUBMITTED", 0, [self.predicate_note], ceiling)

        fraction, kind = best_fraction(qualifying, self.evidence_fractions)
        notes = ["Awaiting corroborating signals."]
        if kind is not None:
            notes.append(f"Partial credit for {kind} evidence ({int(round(fraction * 100))}%).")
        return _bounded("SUBMITTED", _floor_points(base_points, fraction), notes, ceiling)


@dataclass(slots=True)
class EvidenceOnlyRule:
    """Tasks judged on evidence alone; `verifying_kinds` complete the task outright."""

    code: str
    verifying_kinds: tuple[str, ...]
    evidence_fractions: dict[str, float] = field(default_factory=dict)
    default_bonus: tuple[dict[str, Any], ...] = ()
    evidence_predicate: EvidencePredicate | None = None
    predicate_note: str = "Submitted evidence does not match what this task asks for."

    def evaluate(
        self,
        evidence: Sequence[Any],
        signals: Sequence[Any],
        window: VerificationWindow,
        *,
        base_points: int,
        bonus_rules: Sequence[Any] | None = None,
    ) -> VerificationOutcome:
        tiers = parse_bonus_tiers(bonus_rules if bonus_rules else self.default_bonus)
        ceiling = max_points(base_points, tiers)
        if not evidence:
            return VerificationOutcome(status="NOT_STARTED", points=0, notes=["No evidence submitted."])

        qualifying = [item for item in evidence if self.evidence_predicate is None or self.evidence_predicate(item)]
        if not qualifying:
            return _bounded("SUBMITTED", 0, [self.predicate_note], ceiling)

        kinds = evidence_kinds_present(qualifying)
        verifying = sorted(kinds.intersection(self.verifying_kinds))
        if verifying:
            bonus, bonus_notes = apply_bonus_tiers(tiers, signals_in_window(signals, window), window)
            notes = [f"{verifying[0]} evidence accepted."]
            return _bounded("VERIFIED", base_points + bonus, notes + bonus_notes, ceiling)

        fraction, kind = best_fraction(qualifying, self.evidence_fractions)
        notes = ["Evidence submitted; stronger proof needed for full credit."]
        if kind is not None:
            notes.append(f"Partial credit for {kind} evidence ({int(round(fraction * 100))}%).")
        return _bounded("SUBMITTED", _floor_points(base_points, fraction), notes, ceiling)


@dataclass(slots=True)
class HeadlineRule:
    """Headline text within a length band, confirmed by a screenshot."""

    code: str
    min_length: int = 70
    max_length: int = 120
    without_screenshot_fraction: float = 0.7
    out_of_band_fraction: float = 0.3

    def evaluate(
        self,
        evidence: Sequence[Any],
        signals: Sequence[Any],
        window: VerificationWindow,
        *,
        base_points: int,
        bonus_rules: Sequence[Any] | None = None,
    ) -> VerificationOutcome:
        ceiling = max_points(base_points, parse_bonus_tiers(bonus_rules))
        if not evidence:
            return VerificationOutcome(status="NOT_STARTED", points=0, notes=["No evidence submitted."])

        texts = [str(field_of(item, "text") or "").strip() for item in evidence]
        texts = [text for text in texts if text]
        if not texts:
            return _bounded("SUBMITTED", 0, ["No headline text provided."], ceiling)

        headline = texts[-1]
        length = len(headline)
        if not self.min_length <= length <= self.max_length:
            note = f"Headline length is {length} characters (requires {self.min_length}-{self.max_length})."
            return _bounded("SUBMITTED", _floor_points(base_points, self.out_of_band_fraction), [note], ceiling)

        if "SCREENSHOT" in evidence_kinds_present(evidence):
            return _bounded("VERIFIED", base_points, ["Headline meets length requirements with screenshot."], ceiling)
        return _bounded(
            "PARTIALLY_VERIFIED",
            _floor_points(base_points, self.without_screenshot_fraction),
            ["Headline meets length requirements; screenshot missing."],
            ceiling,
        )


class RuleRegistry:
    """In-memory task code -> rule mapping."""

    def __init__(self) -> None:
        self._rules: dict[str, Rule] = {}

    def register(self, rule: Rule) -> None:
        code = str(getattr(rule, "code", "") or "").strip()
        if not code:
            raise ValueError("Rule code must be a non-empty string.")
        if code in self._rules:
            raise ValueError(f"Rule `{code}` is already registered.")
        self._rules[code] = rule

    def get(self, code: str) -> Rule | None:
        return self._rules.get(code)

    def codes(self) -> list[str]:
        return sorted(self._rules)

    def __contains__(self, code: object) -> bool:
        return code in self._rules

    def __len__(self) -> int:
        return len(self._rules)


_DEFAULT_REGISTRY: RuleRegistry | None = None


def get_default_registry() -> RuleRegistry:
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        from .rules import register_default_rules

        registry = RuleRegistry()
        register_default_rules(registry)
        _DEFAULT_REGISTRY = registry
    return _DEFAULT_REGISTRY


def verify(
    task_code: str,
    evidence: Sequence[Any],
    signals: Sequence[Any],
    period_start: datetime,
    period_end: datetime,
    *,
    base_points: int,
    bonus_rules: Sequence[Any] | None = None,
    registry: RuleRegistry | None = None,
    unknown_code_fraction: float = 0.5,
) -> VerificationOutcome:
    """Compute the outcome for one task from its evidence and the user's signals."""
    if base_points < 0:
        raise ValueError("base_points must be non-negative.")
    window = VerificationWindow(start=period_start, end=period_end)
    rule = (registry if registry is not None else get_default_registry()).get(task_code)
    if rule is None:
        if not evidence:
            return VerificationOutcome(
                status="NOT_STARTED",
                points=0,
                notes=[f"No verification rule for task code '{task_code}'.", "No evidence submitted."],
            )
        return VerificationOutcome(
            status="SUBMITTED",
            points=_floor_points(base_points, unknown_code_fraction),
            notes=[f"No verification rule for task code '{task_code}'; pending manual review."],
        )
    return rule.evaluate(evidence, signals, window, base_points=base_points, bonus_rules=bonus_rules)
