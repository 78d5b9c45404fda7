"""
Verification tiers and human confirm / correct / dispute actions.

Tier rules:
    - brand_verified / creator_confirmed provenance -> that tier, whatever
      the numeric confidence
    - disputed provenance                           -> disputed
    - otherwise auto_high at confidence >= 85, else auto

confirm(), correct() and dispute() never touch their input. Each returns a
new Claim whose previous_values ends with the state it replaced, so the
full audit trail survives every action.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .evidence import (
    PROVENANCE_AUTO,
    PROVENANCE_BRAND_VERIFIED,
    PROVENANCE_CREATOR_CONFIRMED,
    PROVENANCE_DISPUTED,
    PROVENANCE_HUMAN_REVIEWED,
    PROVENANCE_USER_CORRECTED,
    Claim,
    utc_now,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TIER_AUTO = "auto"
TIER_AUTO_HIGH = "auto_high"
TIER_CREATOR_CONFIRMED = "creator_confirmed"
TIER_BRAND_VERIFIED = "brand_verified"
TIER_DISPUTED = "disputed"

VerificationTier = Literal["auto", "auto_high", "creator_confirmed", "brand_verified", "disputed"]

AUTO_HIGH_THRESHOLD = 85.0     # auto claims at or above this are auto_high
CONFIRM_BONUS = 10.0           # confidence added by a human confirmation
CORRECTION_CONFIDENCE = 95.0   # a human-supplied value is near-certain

CONFIRMING_PROVENANCES = (
    PROVENANCE_CREATOR_CONFIRMED,
    PROVENANCE_BRAND_VERIFIED,
    PROVENANCE_HUMAN_REVIEWED,
)


class VerificationState(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: VerificationTier = TIER_AUTO
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    dispute_reason: Optional[str] = None


def tier_of(confidence: float, provenance: str = PROVENANCE_AUTO) -> str:
    """
    Discrete trust tier for a confidence/provenance pair.

    Examples:
        tier_of(40, "brand_verified") -> "brand_verified"
        tier_of(99, "disputed")       -> "disputed"
        tier_of(85, "auto")           -> "auto_high"
        tier_of(84.9, "user_corrected") -> "auto"
    """
    if provenance == PROVENANCE_BRAND_VERIFIED:
        return TIER_BRAND_VERIFIED
    if provenance == PROVENANCE_CREATOR_CONFIRMED:
        return TIER_CREATOR_CONFIRMED
    if provenance == PROVENANCE_DISPUTED:
        return TIER_DISPUTED
    return TIER_AUTO_HIGH if confidence >= AUTO_HIGH_THRESHOLD else TIER_AUTO


def verification_for_score(score: float) -> VerificationState:
    """Automatic verification state for a freshly computed match score."""
    return VerificationState(tier=tier_of(score, PROVENANCE_AUTO), confidence=score)


def verification_state(claim: Claim) -> VerificationState:
    dispute_reason = None
    if claim.provenance == PROVENANCE_DISPUTED and claim.previous_values:
        dispute_reason = claim.previous_values[-1].reason
    return VerificationState(
        tier=tier_of(claim.confidence, claim.provenance),
        confidence=claim.confidence,
        verified_at=claim.verified_at,
        verified_by=claim.verified_by,
        dispute_reason=dispute_reason,
    )


# ---------------------------------------------------------------------------
# Claim actions
# ---------------------------------------------------------------------------

def confirm(claim: Claim, provenance: str, actor_id: str) -> Claim:
    """
    A human (creator, brand or reviewer) confirms the claim's value.

    Raises:
        ValueError: provenance is not a confirming provenance
    """
    if provenance not in CONFIRMING_PROVENANCES:
        raise ValueError(
            f"cannot confirm with provenance '{provenance}' "
            f"(expected one of: {', '.join(CONFIRMING_PROVENANCES)})"
        )
    now = utc_now()
    return claim.model_copy(update={
        "provenance": provenance,
        "confidence": min(100.0, claim.confidence + CONFIRM_BONUS),
        "verified_at": now,
        "verified_by": actor_id,
        "updated_at": now,
        "previous_values": claim.previous_values + (claim.snapshot(reason="confirmed", at=now),),
    })


def correct(claim: Claim, new_value, actor_id: str, reason: Optional[str] = None) -> Claim:
    """Replace the claim's value with a human-supplied one."""
    now = utc_now()
    return claim.model_copy(update={
        "value": new_value,
        "provenance": PROVENANCE_USER_CORRECTED,
        "confidence": CORRECTION_CONFIDENCE,
        "verified_at": now,
        "verified_by": actor_id,
        "updated_at": now,
        "previous_values": claim.previous_values + (claim.snapshot(reason=reason, at=now),),
    })


def dispute(claim: Claim, actor_id: str, reason: str) -> Claim:
    """Mark the claim disputed. Value and confidence are kept for review."""
    now = utc_now()
    return claim.model_copy(update={
        "provenance": PROVENANCE_DISPUTED,
        "verified_at": now,
        "verified_by": actor_id,
        "updated_at": now,
        "previous_values": claim.previous_values + (claim.snapshot(reason=reason, at=now),),
    })


# ---------------------------------------------------------------------------
# Match-level actions
# ---------------------------------------------------------------------------

def confirm_match(result, provenance: str, actor_id: str):
    """ComparisonResult copy whose verification reflects a human confirmation."""
    if provenance not in CONFIRMING_PROVENANCES:
        raise ValueError(f"cannot confirm with provenance '{provenance}'")
    confidence = min(100.0, result.final_score + CONFIRM_BONUS)
    state = VerificationState(
        tier=tier_of(confidence, provenance),
        confidence=confidence,
        verified_at=utc_now(),
        verified_by=actor_id,
    )
    return result.model_copy(update={"verification": state})


def dispute_match(result, reason: str, actor_id: str):
    """ComparisonResult copy marked disputed; scores are left as computed."""
    state = VerificationState(
        tier=TIER_DISPUTED,
        confidence=result.verification.confidence,
        verified_at=utc_now(),
        verified_by=actor_id,
        dispute_reason=reason,
    )
    return result.model_copy(update={"verification": state})
