"""
Tabular views of a comparison batch and Excel export.

    results_to_frame()      one row per ranked candidate
    breakdown_to_frame()    one row per (candidate, attribute) line item
    profile_to_frame()      one row per fused reference attribute
    compute_batch_metrics() summary counts/rates for a batch
    export_results()        all of the above as an .xlsx workbook
"""

import io
import logging
from pathlib import Path
from typing import Dict, Union

import pandas as pd

from .fusion import FusedProfile
from .pipeline import BatchResult
from .scorer import FLAG_INSUFFICIENT_EVIDENCE

logger = logging.getLogger(__name__)

SHEET_RANKED = 'Ranked Candidates'
SHEET_BREAKDOWN = 'Attribute Breakdown'
SHEET_PROFILE = 'Reference Profile'
SHEET_SUMMARY = 'Summary'

RESULT_COLUMNS = [
    'rank', 'candidate_id', 'title', 'final_score', 'raw_score', 'was_capped',
    'capped_reason', 'low_confidence', 'verification_tier', 'critical_mismatches', 'flags',
]


def results_to_frame(batch: BatchResult) -> pd.DataFrame:
    rows = []
    for result in batch.results:
        rows.append({
            'rank': result.rank,
            'candidate_id': result.candidate_id,
            'title': result.title,
            'final_score': result.final_score,
            'raw_score': result.raw_score,
            'was_capped': result.was_capped,
            'capped_reason': result.capped_reason or '',
            'low_confidence': result.low_confidence,
            'verification_tier': result.verification.tier,
            'critical_mismatches': ', '.join(c.label for c in result.critical_mismatches),
            'flags': '; '.join(result.flags),
        })
    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def breakdown_to_frame(batch: BatchResult) -> pd.DataFrame:
    """Full per-attribute accounting, including the uncapped points of capped items."""
    rows = []
    for result in batch.results:
        for item in result.breakdown:
            rows.append({
                'rank': result.rank,
                'candidate_id': result.candidate_id,
                'attribute': item.label,
                'reference': item.ref_value,
                'candidate': item.cand_value,
                'points': item.points,
                'max_points': item.max_points,
                'grade': item.grade,
                'critical': item.is_critical,
                'reasoning': item.reasoning,
            })
    return pd.DataFrame(rows, columns=[
        'rank', 'candidate_id', 'attribute', 'reference', 'candidate',
        'points', 'max_points', 'grade', 'critical', 'reasoning',
    ])


def profile_to_frame(profile: FusedProfile) -> pd.DataFrame:
    rows = []
    for name, attr in profile.attributes.items():
        rows.append({
            'attribute': name,
            'value': attr.display_value,
            'confidence': round(attr.confidence, 1),
            'source_id': attr.source_id or '',
            'evidence': attr.evidence.describe() if attr.evidence is not None else '',
            'alternatives': '; '.join(
                f"{alt.value} ({alt.source_id}, {alt.confidence:.0f})" for alt in attr.alternatives
            ),
        })
    return pd.DataFrame(rows, columns=['attribute', 'value', 'confidence', 'source_id', 'evidence', 'alternatives'])


def compute_batch_metrics(batch: BatchResult, min_match_confidence: float = 75.0) -> Dict[str, object]:
    """
    Summary metrics for one comparison batch.

    Returns a dict with:
        total_candidates: int, ranked candidates
        confident_count / confident_rate: final_score >= min_match_confidence
            and not low confidence
        capped_count / capped_rate: deal-breaker veto applied
        low_confidence_count: reference profile too incomplete
        insufficient_evidence: the profile resolved nothing at all
        avg_final_score / top_final_score
        failed_sources / failed_candidates: extraction failures dropped
        profile_completeness / profile_confidence
        tiebreak_needed / tiebreaker_used
    """
    profile = batch.profile
    results = batch.results
    total = len(results)

    metrics = {
        'total_candidates': total,
        'confident_count': 0,
        'confident_rate': 0.0,
        'capped_count': 0,
        'capped_rate': 0.0,
        'low_confidence_count': 0,
        'insufficient_evidence': profile.is_insufficient,
        'avg_final_score': 0.0,
        'top_final_score': 0.0,
        'failed_sources': len(batch.failed_sources),
        'failed_candidates': len(batch.failed_candidates),
        'profile_completeness': round(profile.completeness, 1),
        'profile_confidence': round(profile.overall_confidence, 1),
        'source_count': profile.source_count,
        'best_effort': profile.best_effort,
        'tiebreak_needed': batch.tiebreak_needed,
        'tiebreaker_used': batch.tiebreaker_used,
    }
    if total == 0:
        return metrics

    confident = [r for r in results if r.final_score >= min_match_confidence and not r.low_confidence]
    capped = [r for r in results if r.was_capped]
    low = [r for r in results if r.low_confidence]

    metrics.update({
        'confident_count': len(confident),
        'confident_rate': round(len(confident) / total * 100, 1),
        'capped_count': len(capped),
        'capped_rate': round(len(capped) / total * 100, 1),
        'low_confidence_count': len(low),
        'avg_final_score': round(sum(r.final_score for r in results) / total, 2),
        'top_final_score': results[0].final_score,
    })
    return metrics


def _summary_frame(metrics: Dict[str, object]) -> pd.DataFrame:
    return pd.DataFrame(
        [{'metric': key, 'value': value} for key, value in metrics.items()],
        columns=['metric', 'value'],
    )


def export_results(
    batch: BatchResult,
    path: Union[str, Path, io.BytesIO],
    min_match_confidence: float = 75.0,
) -> None:
    """
    Write a batch to an Excel workbook.

    Sheets: Ranked Candidates, Attribute Breakdown, Reference Profile,
    Summary. Capped and low-confidence rows are always included with their
    flags. `path` may be a file path or a BytesIO buffer.
    """
    metrics = compute_batch_metrics(batch, min_match_confidence)
    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        results_to_frame(batch).to_excel(writer, sheet_name=SHEET_RANKED, index=False)
        breakdown_to_frame(batch).to_excel(writer, sheet_name=SHEET_BREAKDOWN, index=False)
        profile_to_frame(batch.profile).to_excel(writer, sheet_name=SHEET_PROFILE, index=False)
        _summary_frame(metrics).to_excel(writer, sheet_name=SHEET_SUMMARY, index=False)

    if metrics['insufficient_evidence']:
        logger.warning("Exported batch has %s: no reference attributes resolved", FLAG_INSUFFICIENT_EVIDENCE.lower())
    logger.info("Wrote %d ranked candidate(s) to %s", metrics['total_candidates'], path)
