"""
Batch pipeline: extraction boundary, fusion barrier, scoring and ranking.

Pipeline Flow:
    1. Run the extraction oracle over every reference source (bounded thread
       pool). Failed sources are logged and dropped.
    2. Barrier: fusion waits for every reference extraction. Fusing a subset
       only happens in best_effort mode (with a timeout) and the profile is
       labelled as such.
    3. Run the oracle over every candidate listing. A failed candidate is
       excluded from ranking and recorded; the batch still completes.
    4. Score each candidate independently, then rank.
    5. Close call (top two within the tiebreak threshold, leader above the
       minimum score): flag both, and let an optional tiebreaker callable
       pick the winner.

The oracle is an external collaborator. Retries, rate limits and backoff
belong to it, not to this module.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, List, Mapping, NamedTuple, Optional, Protocol, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict

from .config import Settings, load_settings
from .evidence import Evidence
from .fusion import FusedProfile, fuse
from .observations import SourceObservation, parse_oracle_output
from .schemas import CategorySchema, get_schema
from .scorer import (
    FLAG_CLOSE_CALL,
    FLAG_TIEBREAKER_USED,
    ComparisonResult,
    needs_tiebreak,
    rank_candidates,
    score,
)

logger = logging.getLogger(__name__)


class ExtractionOracle(Protocol):
    """Turns one evidence source into a raw attribute guess (a mapping)."""

    def __call__(self, source: Any, schema: CategorySchema) -> Mapping[str, Any]:
        ...


# Picks the winner of a close call: returns the winning candidate_id, or None
# to keep the current order.
Tiebreaker = Callable[[FusedProfile, ComparisonResult, ComparisonResult], Optional[str]]


class ReferenceSource(BaseModel):
    """One piece of reference evidence handed to the oracle (e.g. a sampled frame)."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    payload: Any = None
    evidence: Optional[Evidence] = None


class CandidateListing(BaseModel):
    """One shopping candidate handed to the oracle."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    title: str = ""
    url: Optional[str] = None
    payload: Any = None
    evidence: Optional[Evidence] = None


class ExtractionResult(NamedTuple):
    observations: List[SourceObservation]
    failed: List[str]


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    profile: FusedProfile
    results: Tuple[ComparisonResult, ...] = ()
    failed_sources: Tuple[str, ...] = ()
    failed_candidates: Tuple[str, ...] = ()
    tiebreak_needed: bool = False
    tiebreaker_used: bool = False

    @property
    def top_match(self) -> Optional[ComparisonResult]:
        return self.results[0] if self.results else None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def _extract_one(source, oracle: ExtractionOracle, schema: CategorySchema, model_version: str):
    raw = oracle(source, schema)
    return parse_oracle_output(raw, schema, source.source_id, source.evidence, model_version)


def extract_observations(
    sources: Sequence[Union[ReferenceSource, CandidateListing]],
    oracle: ExtractionOracle,
    schema: CategorySchema,
    max_workers: Optional[int] = None,
    model_version: str = "",
    timeout: Optional[float] = None,
) -> ExtractionResult:
    """
    Run the oracle over every source with bounded concurrency.

    Waits for all calls (or until `timeout` seconds, if given) before
    returning. Any source whose call raised, returned unusable output or
    did not finish in time is logged and reported in `failed`. Observations
    come back in the input order.
    """
    if not sources:
        return ExtractionResult([], [])

    workers = max(1, min(max_workers or load_settings().max_workers, len(sources)))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract")
    try:
        futures = [executor.submit(_extract_one, s, oracle, schema, model_version) for s in sources]
        _, not_done = wait(futures, timeout=timeout)
    finally:
        executor.shutdown(wait=timeout is None, cancel_futures=True)

    observations: List[SourceObservation] = []
    failed: List[str] = []
    for source, future in zip(sources, futures):
        if future in not_done:
            logger.warning("Extraction timed out for source %s", source.source_id)
            failed.append(source.source_id)
            continue
        try:
            observations.append(future.result())
        except Exception as e:
            logger.warning("Extraction failed for source %s: %s", source.source_id, e)
            failed.append(source.source_id)

    logger.info(
        "Extracted %d/%d sources (%d failed)", len(observations), len(sources), len(failed)
    )
    return ExtractionResult(observations, failed)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def _resolve_schema(schema: Union[CategorySchema, str]) -> CategorySchema:
    return get_schema(schema) if isinstance(schema, str) else schema


def _apply_tiebreak(
    profile: FusedProfile,
    ranked: List[ComparisonResult],
    tiebreaker: Optional[Tiebreaker],
) -> Tuple[List[ComparisonResult], bool]:
    first, second = ranked[0].with_flags(FLAG_CLOSE_CALL), ranked[1].with_flags(FLAG_CLOSE_CALL)
    used = False

    if tiebreaker is not None:
        try:
            winner_id = tiebreaker(profile, first, second)
        except Exception as e:
            logger.warning("Tiebreaker failed, keeping score order: %s", e)
            winner_id = None

        if winner_id in (first.candidate_id, second.candidate_id):
            used = True
            if winner_id == second.candidate_id:
                first, second = second, first
            first = first.with_flags(FLAG_TIEBREAKER_USED)
            logger.info("Tiebreaker picked %s over %s", first.candidate_id, second.candidate_id)

    top = [
        first.model_copy(update={"rank": 1}),
        second.model_copy(update={"rank": 2}),
    ]
    return top + ranked[2:], used


def compare_observations(
    reference: Sequence[SourceObservation],
    candidates: Sequence[SourceObservation],
    schema: Union[CategorySchema, str],
    titles: Optional[Mapping[str, str]] = None,
    best_effort: bool = False,
    tiebreaker: Optional[Tiebreaker] = None,
    settings: Optional[Settings] = None,
    failed_sources: Sequence[str] = (),
    failed_candidates: Sequence[str] = (),
) -> BatchResult:
    """
    Fuse already-extracted reference observations and rank the candidates.

    Raises:
        SchemaNotFoundError: schema given as an unknown key
    """
    schema = _resolve_schema(schema)
    settings = settings or load_settings()
    titles = titles or {}

    profile = fuse(reference, schema, best_effort=best_effort)
    if profile.is_insufficient:
        logger.warning("No usable reference evidence for %s; results are low confidence", schema.key)

    ranked = rank_candidates(
        [score(profile, c, schema, title=titles.get(c.source_id, "")) for c in candidates]
    )

    tiebreak = needs_tiebreak(ranked, settings.tiebreak_threshold, settings.tiebreak_min_score)
    used = False
    if tiebreak:
        ranked, used = _apply_tiebreak(profile, ranked, tiebreaker)

    if ranked:
        top = ranked[0]
        logger.info(
            "Ranked %d candidate(s) for %s; top %s at %.1f%s",
            len(ranked), schema.key, top.candidate_id, top.final_score,
            " (capped)" if top.was_capped else "",
        )

    return BatchResult(
        profile=profile,
        results=tuple(ranked),
        failed_sources=tuple(failed_sources),
        failed_candidates=tuple(failed_candidates),
        tiebreak_needed=tiebreak,
        tiebreaker_used=used,
    )


def compare_batch(
    reference_sources: Sequence[ReferenceSource],
    candidates: Sequence[CandidateListing],
    oracle: ExtractionOracle,
    schema: Union[CategorySchema, str],
    candidate_oracle: Optional[ExtractionOracle] = None,
    best_effort: bool = False,
    timeout: Optional[float] = None,
    tiebreaker: Optional[Tiebreaker] = None,
    settings: Optional[Settings] = None,
    model_version: str = "",
) -> BatchResult:
    """
    Full batch: extract reference and candidates, fuse, score, rank.

    Args:
        reference_sources: evidence of the product the creator showed
        candidates: shopping listings to compare against it
        oracle: extraction collaborator for reference sources
        schema: CategorySchema or registry key such as "Clothing:Tops"
        candidate_oracle: separate extractor for listings (defaults to oracle)
        best_effort: allow fusing whatever finished within `timeout`;
            without it every reference extraction is waited for
        tiebreaker: optional close-call resolver (see Tiebreaker)

    Raises:
        SchemaNotFoundError: unknown schema key
    """
    schema = _resolve_schema(schema)
    settings = settings or load_settings()
    workers = settings.max_workers

    reference = extract_observations(
        reference_sources, oracle, schema, workers, model_version,
        timeout=timeout if best_effort else None,
    )
    extracted = extract_observations(candidates, candidate_oracle or oracle, schema, workers, model_version)

    return compare_observations(
        reference.observations,
        extracted.observations,
        schema,
        titles={c.source_id: c.title for c in candidates},
        best_effort=best_effort,
        tiebreaker=tiebreaker,
        settings=settings,
        failed_sources=reference.failed,
        failed_candidates=extracted.failed,
    )
