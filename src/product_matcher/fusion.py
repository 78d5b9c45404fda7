"""
Multi-source attribute fusion.

fuse() merges per-source observations (one extraction per video frame, say)
into one reference profile:

    for every schema attribute:
        - readings marked "not observed" are discarded
        - nothing left            -> UNKNOWN, confidence 0, no source
        - otherwise the highest-confidence reading wins; equal confidences
          go to the earliest source
        - every other reading is kept as an alternative

A reading without its own confidence inherits its source's overall
confidence.

Sources are put into a canonical order (evidence frame index, then
timestamp, then source_id, then content) before selection. "Earliest" means
earliest in the video, not earliest in the argument list, so the same set
of observations fuses to the same profile whatever order the caller passes
them in. The profile is rebuilt from scratch whenever sources change; it is
never patched.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .evidence import Claim, Evidence, create_claim
from .observations import SourceObservation
from .schemas import CategorySchema


class _Unknown:
    """Sentinel for an attribute no source resolved. Distinct from every domain value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __str__(self) -> str:
        return "unknown"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()


class Alternative(BaseModel):
    """A reading that lost to the fused value."""

    model_config = ConfigDict(frozen=True)

    value: Any
    source_id: str
    confidence: float


class FusedAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: Any = UNKNOWN
    confidence: float = 0.0
    source_id: Optional[str] = None
    evidence: Optional[Evidence] = None
    alternatives: Tuple[Alternative, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.value is not UNKNOWN

    @property
    def display_value(self) -> str:
        return str(self.value) if self.resolved else "unknown"


class FusedProfile(BaseModel):
    """One resolved value per schema attribute, in schema order."""

    model_config = ConfigDict(frozen=True)

    schema_key: str
    attributes: Dict[str, FusedAttribute] = Field(default_factory=dict)
    completeness: float = 0.0         # % of schema attributes resolved
    overall_confidence: float = 0.0   # mean confidence of resolved attributes
    source_count: int = 0
    source_ids: Tuple[str, ...] = ()
    best_effort: bool = False

    def get(self, name: str) -> FusedAttribute:
        """Fused attribute by name; attributes outside the schema are UNKNOWN."""
        return self.attributes.get(name) or FusedAttribute(name=name)

    def value(self, name: str):
        return self.get(name).value

    @property
    def resolved_names(self) -> List[str]:
        return [name for name, attr in self.attributes.items() if attr.resolved]

    @property
    def is_insufficient(self) -> bool:
        """Nothing resolved at all: there is no reference profile to match against."""
        return self.completeness <= 0.0

    def attribute_sources(self) -> Dict[str, Optional[str]]:
        return {name: attr.source_id for name, attr in self.attributes.items()}


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------

def _fingerprint(source: SourceObservation) -> str:
    readings = sorted(
        (name, r.observed, repr(r.value), r.confidence) for name, r in source.readings.items()
    )
    return repr((readings, source.confidence))


def _source_key(source: SourceObservation):
    evidence = source.evidence
    frame = evidence.frame_index if evidence is not None else None
    timestamp = evidence.timestamp if evidence is not None else None
    # Sources without a position sort after positioned ones
    return (
        frame is None, frame or 0,
        timestamp is None, timestamp or 0.0,
        source.source_id, _fingerprint(source),
    )


def canonical_order(sources: Sequence[SourceObservation]) -> List[SourceObservation]:
    """Sources sorted by evidence position (frame, timestamp), then source_id, then content."""
    return sorted(sources, key=_source_key)


def _fuse_attribute(name: str, ordered: Sequence[SourceObservation]) -> FusedAttribute:
    candidates = []
    for index, source in enumerate(ordered):
        reading = source.reading(name)
        if not reading.observed or reading.value is None:
            continue
        confidence = reading.confidence if reading.confidence is not None else source.confidence
        candidates.append((confidence, index, source, reading.value))

    if not candidates:
        return FusedAttribute(name=name)

    # Highest confidence first, earliest source on ties
    candidates.sort(key=lambda c: (-c[0], c[1]))
    confidence, _, winner, value = candidates[0]
    alternatives = tuple(
        Alternative(value=v, source_id=s.source_id, confidence=c) for c, _, s, v in candidates[1:]
    )
    return FusedAttribute(
        name=name,
        value=value,
        confidence=confidence,
        source_id=winner.source_id,
        evidence=winner.evidence,
        alternatives=alternatives,
    )


def fuse(
    sources: Sequence[SourceObservation],
    schema: CategorySchema,
    best_effort: bool = False,
) -> FusedProfile:
    """
    Fuse per-source observations into one reference profile.

    Args:
        sources: every successful observation of the reference product
        schema: category schema defining which attributes exist
        best_effort: mark the profile as built from a partial source set

    Returns:
        FusedProfile. With no sources every attribute is UNKNOWN and
        completeness is 0.
    """
    ordered = canonical_order(sources)
    attributes = {name: _fuse_attribute(name, ordered) for name in schema.attribute_names}

    resolved = [a for a in attributes.values() if a.resolved]
    total = len(attributes)
    completeness = 100.0 * len(resolved) / total if total else 0.0
    overall = sum(a.confidence for a in resolved) / len(resolved) if resolved else 0.0

    return FusedProfile(
        schema_key=schema.key,
        attributes=attributes,
        completeness=completeness,
        overall_confidence=overall,
        source_count=len(ordered),
        source_ids=tuple(s.source_id for s in ordered),
        best_effort=best_effort,
    )


def fuse_claims(profile: FusedProfile, model_version: str = "") -> Dict[str, Claim]:
    """Each resolved attribute as an automatic Claim backed by its winning source's evidence."""
    claims = {}
    for name, attr in profile.attributes.items():
        if not attr.resolved:
            continue
        evidence = (attr.evidence,) if attr.evidence is not None else ()
        claims[name] = create_claim(attr.value, attr.confidence, evidence, model_version)
    return claims
