"""
Critical attribute gate.

Re-checks the fused reference against a candidate on the schema's
deal-breaker attributes only. Both raw values go through normalize(); a
check passes only when both sides normalize and land on the same token.

An UNKNOWN reference never passes: absence of evidence is not evidence of a
match. The gate classifies; capping the score is the scorer's job.
"""

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .fusion import FusedProfile
from .normalizer import clean_value, normalize
from .observations import SourceObservation
from .schemas import AttributeDefinition, CategorySchema


REASON_REFERENCE_UNKNOWN = "Reference value unknown"
REASON_NOT_OBSERVED = "Candidate value not observed"


class CriticalCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    attribute: str
    label: str
    ref_value: Optional[str] = None
    cand_value: Optional[str] = None
    ref_normalized: Optional[str] = None
    cand_normalized: Optional[str] = None
    matches: bool
    mismatch_reason: Optional[str] = None

    @property
    def reference_unknown(self) -> bool:
        return self.mismatch_reason == REASON_REFERENCE_UNKNOWN


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    checks: Tuple[CriticalCheck, ...] = ()

    @property
    def mismatches(self) -> Tuple[CriticalCheck, ...]:
        return tuple(c for c in self.checks if not c.matches)

    @property
    def any_mismatch(self) -> bool:
        return any(not c.matches for c in self.checks)


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def check_attribute(
    attr: AttributeDefinition,
    ref_value,
    cand_value,
    typo_cutoff: float = 0,
) -> CriticalCheck:
    """Gate one deal-breaker. ref_value / cand_value are None when unknown."""
    groups = attr.matching_groups
    ref_token = normalize(ref_value, groups, typo_cutoff) if ref_value is not None else None
    cand_token = normalize(cand_value, groups, typo_cutoff) if cand_value is not None else None

    if ref_value is None or not clean_value(ref_value):
        reason = REASON_REFERENCE_UNKNOWN
    elif cand_value is None or not clean_value(cand_value):
        reason = REASON_NOT_OBSERVED
    elif ref_token is None:
        reason = f"Reference value '{ref_value}' not recognised"
    elif cand_token is None:
        reason = f"Candidate value '{cand_value}' not recognised"
    elif ref_token != cand_token:
        reason = f"{ref_token} vs {cand_token}"
    else:
        reason = None

    return CriticalCheck(
        attribute=attr.name,
        label=attr.label,
        ref_value=_as_text(ref_value),
        cand_value=_as_text(cand_value),
        ref_normalized=ref_token,
        cand_normalized=cand_token,
        matches=reason is None,
        mismatch_reason=reason,
    )


def check_critical(
    fused: FusedProfile,
    candidate: SourceObservation,
    schema: CategorySchema,
) -> GateResult:
    """
    Classify every deal-breaker of the schema as match / mismatch.

    Examples:
        ✓ neckline "crew" vs "Crew Neck"    -> match (both crew)
        ✗ neckline "crew" vs "mock neck"    -> mismatch (crew vs mock)
        ✗ neckline UNKNOWN vs "crew"        -> mismatch (reference unknown)
    """
    checks = []
    for attr in schema.deal_breakers:
        fused_attr = fused.get(attr.name)
        ref_value = fused_attr.value if fused_attr.resolved else None
        checks.append(
            check_attribute(attr, ref_value, candidate.value(attr.name), schema.rules.typo_cutoff)
        )
    return GateResult(checks=tuple(checks))
