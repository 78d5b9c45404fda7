"""
Candidate scoring and ranking.

score() produces an itemized 0-100 score for one candidate against the fused
reference profile:

Points per attribute (weights from the category schema, summing to 100):
    - attributes with synonym groups, and free strings, are graded with
      match_grade():
          EXACT  -> full weight
          FAMILY -> family_credit x weight   (e.g. olive green vs khaki)
          NONE   -> mismatch_floor x weight  (0 unless the schema says so)
    - exact-only attributes (booleans, enums without groups, numbers):
          equal (numbers within tolerance) -> full weight
          otherwise                        -> mismatch_floor x weight
    - UNKNOWN reference or candidate value not observed -> 0, never floor
      credit

Critical gate:
    Every mismatched deal-breaker gets a flag. If any deal-breaker
    mismatches and the raw score is above the schema's
    critical_mismatch_cap, the final score is also capped (not zeroed).
    The breakdown is always the full uncapped accounting so a reviewer can
    see why a capped item looked close.

Low evidence:
    A reference profile below min_completeness marks every result
    low_confidence; an empty profile is also flagged "Insufficient
    evidence". Such results are still returned and ranked, never dropped.
"""

from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .fusion import FusedProfile
from .gate import CriticalCheck, check_critical
from .normalizer import GRADE_EXACT, GRADE_FAMILY, GRADE_NONE, clean_value, match_grade, normalize
from .observations import SourceObservation
from .schemas import BOOLEAN_GROUPS, KIND_BOOLEAN, KIND_NUMBER, AttributeDefinition, CategorySchema
from .tiers import VerificationState, verification_for_score

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
GRADE_MISSING = "MISSING"   # no comparison possible (unknown / not observed)

FLAG_INSUFFICIENT_EVIDENCE = "Insufficient evidence"
FLAG_CLOSE_CALL = "Close call: visual tiebreak recommended"
FLAG_TIEBREAKER_USED = "Tiebreaker used: visual verification"


class AttributeComparison(BaseModel):
    """One line of the score breakdown."""

    model_config = ConfigDict(frozen=True)

    attribute: str
    label: str
    ref_value: str
    cand_value: str
    points: float
    max_points: float
    grade: str
    reasoning: str
    is_critical: bool = False


class ComparisonResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_id: str
    title: str = ""
    raw_score: float = Field(ge=0.0, le=100.0)
    final_score: float = Field(ge=0.0, le=100.0)
    was_capped: bool = False
    capped_reason: Optional[str] = None
    breakdown: Tuple[AttributeComparison, ...] = ()
    critical_checks: Tuple[CriticalCheck, ...] = ()
    flags: Tuple[str, ...] = ()
    low_confidence: bool = False
    completeness: float = 0.0
    rank: Optional[int] = None
    verification: VerificationState = Field(default_factory=VerificationState)

    @property
    def critical_mismatches(self) -> List[CriticalCheck]:
        return [c for c in self.critical_checks if not c.matches]

    def with_flags(self, *flags: str) -> "ComparisonResult":
        new = tuple(f for f in flags if f not in self.flags)
        return self.model_copy(update={"flags": self.flags + new})


# ---------------------------------------------------------------------------
# Per-attribute points
# ---------------------------------------------------------------------------

def _display(value) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def _to_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _grade_exact_only(attr: AttributeDefinition, ref_value, cand_value) -> Tuple[str, str]:
    """(grade, reasoning) for attributes compared by equality only."""
    if attr.kind == KIND_NUMBER:
        a, b = _to_number(ref_value), _to_number(cand_value)
        if a is None or b is None:
            return GRADE_NONE, "Not comparable as numbers"
        if a == b:
            return GRADE_EXACT, "Exact match"
        if abs(a - b) <= attr.tolerance:
            return GRADE_EXACT, f"Within tolerance (±{attr.tolerance:g})"
        return GRADE_NONE, f"Mismatch: {a:g} vs {b:g}"

    if attr.kind == KIND_BOOLEAN:
        a, b = normalize(ref_value, BOOLEAN_GROUPS), normalize(cand_value, BOOLEAN_GROUPS)
    else:
        a, b = clean_value(ref_value), clean_value(cand_value)
    if a is not None and a == b:
        return GRADE_EXACT, "Exact match"
    return GRADE_NONE, f"Mismatch: {_display(ref_value)} vs {_display(cand_value)}"


def compare_attribute(
    attr: AttributeDefinition,
    ref_value,
    cand_value,
    schema: CategorySchema,
) -> AttributeComparison:
    """
    Points earned by one attribute. ref_value / cand_value are None when
    the reference is UNKNOWN or the candidate did not show the attribute.

    Examples (primary_color, weight 25, family credit 0.7):
        ✓ "olive green" vs "Olive Green" -> 25   (EXACT)
        ✓ "olive" vs "olive green"       -> 25   (EXACT, shade wording)
        ~ "olive green" vs "khaki"       -> 17.5 (FAMILY green)
        ✗ "olive green" vs "red"         -> 0    (NONE)
    """
    weight = attr.weight

    if ref_value is None or clean_value(ref_value) == "":
        grade, reasoning, points = GRADE_MISSING, "Insufficient evidence: reference value unknown", 0.0
    elif cand_value is None or clean_value(cand_value) == "":
        grade, reasoning, points = GRADE_MISSING, "Insufficient evidence: not shown on candidate", 0.0
    else:
        if attr.is_fuzzy:
            grade, reasoning = match_grade(
                ref_value,
                cand_value,
                attr.synonym_groups,
                substring_min_ratio=schema.rules.substring_min_ratio,
                typo_cutoff=schema.rules.typo_cutoff,
            )
        else:
            grade, reasoning = _grade_exact_only(attr, ref_value, cand_value)

        if grade == GRADE_EXACT:
            points = weight
        elif grade == GRADE_FAMILY:
            credit = schema.family_credit_for(attr)
            points = weight * credit
            reasoning = f"{reasoning} ({credit:.0%} credit)"
        else:
            points = weight * attr.mismatch_floor
            if attr.mismatch_floor:
                reasoning = f"{reasoning} ({attr.mismatch_floor:.0%} floor)"

    return AttributeComparison(
        attribute=attr.name,
        label=attr.label,
        ref_value=_display(ref_value),
        cand_value=_display(cand_value),
        points=round(points, 2),
        max_points=weight,
        grade=grade,
        reasoning=reasoning,
        is_critical=attr.deal_breaker,
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _mismatch_flag(check: CriticalCheck) -> str:
    if check.reference_unknown:
        return f"Could not verify {check.label} (reference unknown)"
    return f"Similar style but different {check.label}"


def score(
    fused: FusedProfile,
    candidate: SourceObservation,
    schema: CategorySchema,
    title: str = "",
) -> ComparisonResult:
    """
    Score one candidate against the fused reference profile.

    Args:
        fused: reference profile from fuse()
        candidate: the candidate listing's attribute observation
        schema: category schema (weights, deal-breakers, rules)
        title: display title of the candidate listing

    Returns:
        ComparisonResult with raw/final score, breakdown, critical checks
        and flags. rank is left unset until rank_candidates().
    """
    rules = schema.rules

    breakdown = []
    for attr in schema.attributes:
        fused_attr = fused.get(attr.name)
        ref_value = fused_attr.value if fused_attr.resolved else None
        breakdown.append(compare_attribute(attr, ref_value, candidate.value(attr.name), schema))

    raw_score = round(sum(item.points for item in breakdown), 2)
    raw_score = max(0.0, min(100.0, raw_score))

    gate = check_critical(fused, candidate, schema)
    mismatches = gate.mismatches

    flags: List[str] = [_mismatch_flag(c) for c in mismatches]
    final_score = raw_score
    was_capped = False
    capped_reason = None
    if gate.any_mismatch and raw_score > rules.critical_mismatch_cap:
        final_score = rules.critical_mismatch_cap
        was_capped = True
        capped_reason = "Critical mismatch: " + "; ".join(
            f"{c.label} ({c.mismatch_reason})" for c in mismatches
        )

    low_confidence = fused.completeness < rules.min_completeness or fused.is_insufficient
    if low_confidence:
        flags.append(
            "Low confidence: reference profile needs more evidence "
            f"({fused.completeness:.0f}% complete)"
        )
    if fused.is_insufficient:
        flags.append(FLAG_INSUFFICIENT_EVIDENCE)

    return ComparisonResult(
        candidate_id=candidate.source_id,
        title=title,
        raw_score=raw_score,
        final_score=final_score,
        was_capped=was_capped,
        capped_reason=capped_reason,
        breakdown=tuple(breakdown),
        critical_checks=gate.checks,
        flags=tuple(flags),
        low_confidence=low_confidence,
        completeness=fused.completeness,
        verification=verification_for_score(final_score),
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def rank_candidates(results: Sequence[ComparisonResult]) -> List[ComparisonResult]:
    """
    Sort by final score, then raw score (the item that would win without
    the veto), then input order; assign ranks 1..n.
    """
    order = sorted(
        enumerate(results),
        key=lambda item: (-item[1].final_score, -item[1].raw_score, item[0]),
    )
    return [result.model_copy(update={"rank": rank}) for rank, (_, result) in enumerate(order, start=1)]


def score_candidates(
    fused: FusedProfile,
    candidates: Sequence[SourceObservation],
    schema: CategorySchema,
) -> List[ComparisonResult]:
    return rank_candidates([score(fused, c, schema) for c in candidates])


def needs_tiebreak(
    ranked: Sequence[ComparisonResult],
    threshold: float = 5.0,
    min_score: float = 75.0,
) -> bool:
    """Top two within `threshold` points, and the leader good enough to be worth it."""
    if len(ranked) < 2:
        return False
    first, second = ranked[0], ranked[1]
    return first.final_score >= min_score and first.final_score - second.final_score <= threshold


def is_confident_match(result: ComparisonResult, schema: CategorySchema) -> bool:
    return result.final_score >= schema.rules.min_match_confidence and not result.low_confidence
