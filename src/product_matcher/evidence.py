"""
Evidence and Claim primitives.

Every value the matcher believes about a product is wrapped in a Claim:
the value itself, a 0-100 confidence, the Evidence it was read from, and a
provenance tag saying who asserted it.

    Evidence:  where an observation came from (a frame, a transcript span,
                on-screen text, an external listing, a human, or derived).
                Immutable once created.
    Claim[T]:  value + confidence + evidence + provenance + history.
                Claims are never edited; confirm/correct/dispute (see
                tiers.py) return a new Claim whose previous_values has one
                more entry.

All models are frozen pydantic models and use tuples for their sequences, so
neither the record nor its history can be mutated after construction.
"""

from datetime import datetime, timezone
from typing import Any, Generic, Literal, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
EVIDENCE_FRAME = "frame"                   # Visual region of a video frame
EVIDENCE_TRANSCRIPT = "transcript"         # Spoken words
EVIDENCE_TEXT_OVERLAY = "text_overlay"     # On-screen text / captions
EVIDENCE_EXTERNAL_LISTING = "external_listing"  # Shopping listing image or page
EVIDENCE_USER_INPUT = "user_input"         # Creator / brand / reviewer input
EVIDENCE_DERIVED = "derived"               # Computed from other claims

EvidenceKind = Literal[
    "frame", "transcript", "text_overlay", "external_listing", "user_input", "derived",
]

PROVENANCE_AUTO = "auto"
PROVENANCE_CREATOR_CONFIRMED = "creator_confirmed"
PROVENANCE_BRAND_VERIFIED = "brand_verified"
PROVENANCE_USER_CORRECTED = "user_corrected"
PROVENANCE_DISPUTED = "disputed"
PROVENANCE_HUMAN_REVIEWED = "human_reviewed"

Provenance = Literal[
    "auto", "creator_confirmed", "brand_verified", "user_corrected", "disputed", "human_reviewed",
]

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

class BoundingBox(BaseModel):
    """Region of a frame, all coordinates normalized to 0-1."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)


class Evidence(BaseModel):
    """Pointer to where an observation came from."""

    model_config = ConfigDict(frozen=True)

    kind: EvidenceKind
    content_id: Optional[str] = None
    frame_index: Optional[int] = None
    timestamp: Optional[float] = None       # seconds into the video
    timestamp_end: Optional[float] = None   # end of a span
    bounding_box: Optional[BoundingBox] = None
    transcript_span: Optional[str] = None
    source_url: Optional[str] = None
    captured_at: datetime = Field(default_factory=utc_now)

    def describe(self) -> str:
        """Short human-readable locator, e.g. 'frame 3 @ 1.5s'."""
        if self.kind == EVIDENCE_FRAME and self.frame_index is not None:
            loc = f"frame {self.frame_index}"
            if self.timestamp is not None:
                loc += f" @ {self.timestamp:g}s"
            return loc
        if self.kind == EVIDENCE_TRANSCRIPT and self.timestamp is not None:
            end = self.timestamp_end if self.timestamp_end is not None else self.timestamp
            return f"transcript {self.timestamp:g}-{end:g}s"
        if self.source_url:
            return f"{self.kind} {self.source_url}"
        return self.kind


def frame_evidence(
    frame_index: int,
    timestamp: Optional[float] = None,
    content_id: Optional[str] = None,
    bounding_box: Optional[BoundingBox] = None,
) -> Evidence:
    """Evidence for a region (or the whole) of one sampled video frame."""
    return Evidence(
        kind=EVIDENCE_FRAME,
        frame_index=frame_index,
        timestamp=timestamp,
        content_id=content_id,
        bounding_box=bounding_box,
    )


def transcript_evidence(
    text: str,
    start_time: float,
    end_time: float,
    content_id: Optional[str] = None,
) -> Evidence:
    return Evidence(
        kind=EVIDENCE_TRANSCRIPT,
        transcript_span=text,
        timestamp=start_time,
        timestamp_end=end_time,
        content_id=content_id,
    )


def listing_evidence(source_url: str, content_id: Optional[str] = None) -> Evidence:
    """Evidence for a shopping candidate's listing image."""
    return Evidence(kind=EVIDENCE_EXTERNAL_LISTING, source_url=source_url, content_id=content_id)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class ClaimRevision(BaseModel):
    """One prior state of a claim, recorded when it was confirmed or corrected."""

    model_config = ConfigDict(frozen=True)

    value: Any
    confidence: float
    provenance: Provenance
    changed_at: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None


class Claim(BaseModel, Generic[T]):
    """A value plus the confidence, evidence and provenance behind it."""

    model_config = ConfigDict(frozen=True)

    value: T
    confidence: float = Field(ge=0.0, le=100.0)
    evidence: Tuple[Evidence, ...] = ()
    provenance: Provenance = PROVENANCE_AUTO
    model_version: str = ""
    extracted_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    previous_values: Tuple[ClaimRevision, ...] = ()

    def snapshot(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> ClaimRevision:
        """This claim's current state as a history entry."""
        return ClaimRevision(
            value=self.value,
            confidence=self.confidence,
            provenance=self.provenance,
            changed_at=at or utc_now(),
            reason=reason,
        )


def create_claim(
    value: T,
    confidence: float,
    evidence=(),
    model_version: str = "",
) -> Claim:
    """New automatically-extracted claim."""
    return Claim(
        value=value,
        confidence=max(0.0, min(100.0, float(confidence))),
        evidence=tuple(evidence),
        provenance=PROVENANCE_AUTO,
        model_version=model_version,
    )
