"""
Per-source attribute observations and defensive parsing of extractor output.

A SourceObservation is one extractor's reading of every schema attribute from
one evidence source (one video frame, one listing image). Each reading carries
an `observed` flag: "not observed" (the attribute was not visible in this
source) is different from "observed as absent" (e.g. has_buttons=False).

parse_oracle_output() turns whatever the extraction model returned into a
SourceObservation without ever raising on field-level problems:
    - missing attribute / "not_visible" / "unknown" / null -> not observed
    - unparseable boolean or number                        -> not observed
    - source confidence as 0-1 is scaled to 0-100, garbage -> 50; a
      per-reading confidence is 0-100 unless it is a fraction below 1
Only a payload that is not a mapping at all is rejected (ObservationParseError),
so the caller can drop that whole source.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .evidence import Evidence
from .exceptions import ObservationParseError
from .normalizer import clean_value
from .schemas import BOOLEAN_GROUPS, KIND_BOOLEAN, KIND_NUMBER, CategorySchema

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_CONFIDENCE = 50.0  # extractor gave no usable confidence

_TRUE_VALUES = set(BOOLEAN_GROUPS["true"])
_FALSE_VALUES = set(BOOLEAN_GROUPS["false"])


class AttributeReading(BaseModel):
    """One attribute value read from one source."""

    model_config = ConfigDict(frozen=True)

    value: Any = None
    observed: bool = True
    confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)

    @classmethod
    def not_observed(cls) -> "AttributeReading":
        return cls(value=None, observed=False)


NOT_OBSERVED = AttributeReading.not_observed()


class SourceObservation(BaseModel):
    """Every schema attribute as read from one evidence source."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    evidence: Optional[Evidence] = None
    readings: Dict[str, AttributeReading] = Field(default_factory=dict)
    confidence: float = Field(default=DEFAULT_SOURCE_CONFIDENCE, ge=0.0, le=100.0)
    visibility_notes: str = ""
    model_version: str = ""

    def reading(self, name: str) -> AttributeReading:
        return self.readings.get(name, NOT_OBSERVED)

    def value(self, name: str):
        """Raw value, or None when the attribute was not observed."""
        reading = self.reading(name)
        return reading.value if reading.observed else None

    @classmethod
    def from_values(
        cls,
        source_id: str,
        values: Mapping[str, Any],
        confidence: float = 100.0,
        evidence: Optional[Evidence] = None,
        **kwargs,
    ) -> "SourceObservation":
        """
        Build an observation from plain attribute values.

        None and extractor placeholders become not-observed readings; False
        stays an observed False.
        """
        readings = {}
        for name, value in values.items():
            if value is None or (not isinstance(value, bool) and clean_value(value) == ""):
                readings[name] = NOT_OBSERVED
            else:
                readings[name] = AttributeReading(value=value)
        return cls(source_id=source_id, readings=readings, confidence=confidence, evidence=evidence, **kwargs)


# ---------------------------------------------------------------------------
# Defensive parsing
# ---------------------------------------------------------------------------

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def coerce_confidence(
    raw,
    default: Optional[float] = DEFAULT_SOURCE_CONFIDENCE,
    unit_interval: bool = True,
) -> Optional[float]:
    """
    Confidence -> 0-100; anything unusable -> default.

    With unit_interval (the source-level field, which the oracle sends as
    0.0-1.0) every value up to 1 is a fraction. Without it (per-reading
    confidences, usually 0-100) only values strictly between 0 and 1 are
    read as fractions, so a reading confidence of 1 stays 1.
    """
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if value != value:  # NaN
        return default
    if 0.0 < value < 1.0 or (unit_interval and value == 1.0):
        value *= 100.0
    return max(0.0, min(100.0, value))


def _coerce_boolean(raw) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    text = clean_value(raw)
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def _coerce_number(raw) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _coerce_text(raw) -> Optional[str]:
    if isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw if p is not None and clean_value(p)]
        return ", ".join(parts) or None
    if isinstance(raw, (dict, set)):
        return None
    text = str(raw).strip()
    return text if clean_value(text) else None


def _parse_reading(raw, kind: str) -> AttributeReading:
    confidence = None
    if isinstance(raw, Mapping):
        if raw.get("observed") is False:
            return NOT_OBSERVED
        confidence = coerce_confidence(raw.get("confidence"), default=None, unit_interval=False)
        raw = raw.get("value")

    if raw is None:
        return NOT_OBSERVED

    if kind == KIND_BOOLEAN:
        value = _coerce_boolean(raw)
    elif kind == KIND_NUMBER:
        value = _coerce_number(raw)
    else:
        value = _coerce_text(raw)

    if value is None:
        return NOT_OBSERVED
    return AttributeReading(value=value, observed=True, confidence=confidence)


def parse_oracle_output(
    raw: Any,
    schema: CategorySchema,
    source_id: str,
    evidence: Optional[Evidence] = None,
    model_version: str = "",
) -> SourceObservation:
    """
    Defensive conversion of extraction-oracle output into a SourceObservation.

    Accepts the flat shape
        {"primaryColor": "olive green", "neckline": "crew", ...,
         "confidence": 0.9, "visibilityNotes": "..."}
    or the nested shape
        {"attributes": {"primary_color": {"value": "olive green", "confidence": 80}}, ...}
    Attribute keys may be snake_case or camelCase.

    Raises:
        ObservationParseError: raw is not a mapping.
    """
    if not isinstance(raw, Mapping):
        raise ObservationParseError(
            f"source {source_id}: extractor output must be a mapping, got {type(raw).__name__}"
        )

    container = raw.get("attributes")
    if not isinstance(container, Mapping):
        container = raw

    readings: Dict[str, AttributeReading] = {}
    for attr in schema.attributes:
        if attr.name in container:
            entry = container[attr.name]
        else:
            entry = container.get(_camel(attr.name))
        readings[attr.name] = _parse_reading(entry, attr.kind)

    notes = raw.get("visibilityNotes", raw.get("visibility_notes", ""))
    observation = SourceObservation(
        source_id=source_id,
        evidence=evidence,
        readings=readings,
        confidence=coerce_confidence(raw.get("confidence")),
        visibility_notes=notes if isinstance(notes, str) else "",
        model_version=model_version,
    )
    observed = sum(1 for r in readings.values() if r.observed)
    logger.debug("Parsed source %s: %d/%d attributes observed", source_id, observed, len(readings))
    return observation
