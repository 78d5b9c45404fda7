"""
Attribute normalization and fuzzy matching.

Matching Approach:
    - Raw attribute strings from the extractor are cleaned with rapidfuzz's
      default_process (lowercase, punctuation -> space) and whitespace is
      collapsed, so "Off-White" and "off white" compare equal
    - normalize() maps a cleaned value onto a canonical synonym-group token:
        1. exact membership in a group ("army green" -> green)
        2. longest group variant found as a whole-word phrase inside the
           value ("dark olive green knit" -> green)
        3. optional typo tolerance via rapidfuzz extractOne + fuzz.ratio
           ("turtlenek" -> turtleneck), off unless a cutoff is given
    - match_grade() grades a reference/candidate pair:
        EXACT:  equal, or one is a whole-word substring of the other and the
                 length ratio is high enough ("olive" vs "olive green")
        FAMILY: different strings that normalize to the same group token
        NONE:   anything else, including a missing value on either side

Everything here is a pure function of its inputs and the synonym table.
match_grade(a, b) == match_grade(b, a) for every pair.
"""

from functools import lru_cache
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process
from rapidfuzz.utils import default_process

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
GRADE_EXACT = "EXACT"
GRADE_FAMILY = "FAMILY"
GRADE_NONE = "NONE"

DEFAULT_SUBSTRING_MIN_RATIO = 0.4  # "olive" (5) within "olive green" (11) = 0.45

# Extractor placeholders that mean "no reading", after cleaning.
# "none" is not one of them: it is an observed value ("no features").
MISSING_SENTINELS = {
    "", "not visible", "not observed", "unknown", "unclear", "null",
    "nan", "n a", "na", "not applicable",
}


class MatchGrade(NamedTuple):
    grade: str
    reason: str


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

def clean_value(raw) -> str:
    """
    Canonical comparison form of a raw attribute value.

    Returns "" for None and for extractor placeholders ("not_visible",
    "unknown", "N/A", ...). Booleans become "true"/"false"; numbers use their
    shortest repr (12.0 -> "12").
    """
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (int, float)):
        raw = f"{raw:g}"
    text = " ".join(default_process(str(raw).replace("_", " ")).split())
    if text in MISSING_SENTINELS:
        return ""
    return text


def is_missing(raw) -> bool:
    return clean_value(raw) == ""


def contains_phrase(haystack: str, needle: str) -> bool:
    """True if needle appears in haystack on word boundaries (both pre-cleaned)."""
    if not needle:
        return False
    return f" {needle} " in f" {haystack} "


# ---------------------------------------------------------------------------
# Synonym-group index
# ---------------------------------------------------------------------------

def _freeze(groups: Mapping[str, Sequence[str]]) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    return tuple((token, tuple(variants)) for token, variants in groups.items())


@lru_cache(maxsize=512)
def _group_index(frozen_groups) -> Tuple[Dict[str, str], List[Tuple[str, str]], List[str], List[str]]:
    """
    Build lookup structures for one synonym table.

    Returns:
        exact:   cleaned variant -> token (first declared group wins)
        phrases: (cleaned variant, token) sorted longest-first, then by
                 declaration order
        choices / choice_tokens: flat parallel lists for rapidfuzz
    """
    exact: Dict[str, str] = {}
    ordered: List[Tuple[str, str, int]] = []
    position = 0
    for token, variants in frozen_groups:
        # The group token itself is always a member of its own group
        for variant in (token,) + tuple(variants):
            cleaned = clean_value(variant)
            if not cleaned or cleaned in exact:
                continue
            exact[cleaned] = token
            ordered.append((cleaned, token, position))
            position += 1

    phrases = [(v, t) for v, t, _ in sorted(ordered, key=lambda item: (-len(item[0]), item[2]))]
    choices = [v for v, _, _ in ordered]
    choice_tokens = [t for _, t, _ in ordered]
    return exact, phrases, choices, choice_tokens


def normalize(
    raw_value,
    synonym_groups: Optional[Mapping[str, Sequence[str]]],
    typo_cutoff: float = 0,
) -> Optional[str]:
    """
    Map a raw attribute value onto its canonical synonym-group token.

    Args:
        raw_value: extractor output (string, bool, number or None)
        synonym_groups: token -> list of interchangeable raw strings
        typo_cutoff: rapidfuzz fuzz.ratio cutoff (0-100) for typo tolerance;
            0 disables the fuzzy fallback

    Returns:
        The group token, or None if the value is missing or in no group.

    Examples:
        normalize("Army Green", COLOR_FAMILIES)      -> "green"
        normalize("chunky olive green", COLOR_FAMILIES) -> "green"
        normalize("mock neck", NECKLINE_GROUPS)      -> "mock"
        normalize("not_visible", NECKLINE_GROUPS)    -> None
    """
    value = clean_value(raw_value)
    if not value or not synonym_groups:
        return None

    exact, phrases, choices, choice_tokens = _group_index(_freeze(synonym_groups))

    token = exact.get(value)
    if token is not None:
        return token

    for variant, token in phrases:
        if contains_phrase(value, variant):
            return token

    if typo_cutoff and choices:
        best = process.extractOne(value, choices, scorer=fuzz.ratio, score_cutoff=typo_cutoff)
        if best is not None:
            return choice_tokens[best[2]]

    return None


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

def is_exact(a: str, b: str, substring_min_ratio: float = DEFAULT_SUBSTRING_MIN_RATIO) -> bool:
    """EXACT test on two cleaned values."""
    if not a or not b:
        return False
    if a == b:
        return True
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    return contains_phrase(longer, shorter) and len(shorter) / len(longer) >= substring_min_ratio


def match_grade(
    ref_raw,
    cand_raw,
    synonym_groups: Optional[Mapping[str, Sequence[str]]] = None,
    substring_min_ratio: float = DEFAULT_SUBSTRING_MIN_RATIO,
    typo_cutoff: float = 0,
) -> MatchGrade:
    """
    Grade how closely a candidate's attribute value matches the reference.

    Returns:
        MatchGrade(grade, reason) with grade in EXACT / FAMILY / NONE.

    Examples:
        ✓ match_grade("olive green", "Olive Green")  -> EXACT
        ✓ match_grade("olive", "olive green")        -> EXACT (shade wording)
        ~ match_grade("olive green", "khaki")        -> FAMILY (green)
        ✗ match_grade("crew", "mock neck")           -> NONE
    """
    a = clean_value(ref_raw)
    b = clean_value(cand_raw)

    if not a or not b:
        return MatchGrade(GRADE_NONE, "Missing value")

    if a == b:
        return MatchGrade(GRADE_EXACT, "Exact match")

    if is_exact(a, b, substring_min_ratio):
        shorter, longer = sorted((a, b), key=lambda s: (len(s), s))
        return MatchGrade(GRADE_EXACT, f"Shade/wording variation ('{shorter}' within '{longer}')")

    token_a = normalize(a, synonym_groups, typo_cutoff)
    token_b = normalize(b, synonym_groups, typo_cutoff)
    if token_a is not None and token_a == token_b:
        return MatchGrade(GRADE_FAMILY, f"Same family: {token_a}")

    if token_a is not None and token_b is not None:
        return MatchGrade(GRADE_NONE, "Different families: " + " vs ".join(sorted((token_a, token_b))))
    return MatchGrade(GRADE_NONE, "Unrelated values")
