"""
Comparison report generator.

Runs a recorded batch (reference frame extractions + candidate listing
extractions, as JSON) through fusion, scoring and ranking, prints a console
summary and writes an Excel workbook with the ranked candidates, the full
attribute breakdown, the fused reference profile and batch metrics.

Usage:
    python scripts/generate_comparison_report.py [fixture.json] [-o report.xlsx]

The fixture's "extraction" entries are the raw extraction-model outputs; they
are replayed through the same defensive parser the live pipeline uses.
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import argparse
import json
import logging

from product_matcher.config import load_settings
from product_matcher.evidence import frame_evidence, listing_evidence
from product_matcher.logging_config import configure_logging
from product_matcher.pipeline import CandidateListing, ReferenceSource, compare_batch
from product_matcher.reporting import compute_batch_metrics, export_results
from product_matcher.schemas import get_schema, infer_subcategory, schema_key

logger = logging.getLogger(__name__)

DEFAULT_FIXTURE = os.path.join(os.path.dirname(__file__), 'fixtures', 'sample_batch.json')


def replay_oracle(source, schema):
    """Replays a recorded extraction instead of calling a vision model."""
    return source.payload


def load_batch(path: str):
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    category = data['category']
    subcategory = data.get('subcategory') or infer_subcategory(data.get('product_name', ''), category)
    schema = get_schema(schema_key(category, subcategory or ''))

    frames = [
        ReferenceSource(
            source_id=frame['source_id'],
            payload=frame.get('extraction'),
            evidence=frame_evidence(frame.get('frame_index', i), frame.get('timestamp')),
        )
        for i, frame in enumerate(data.get('reference_frames', []))
    ]
    candidates = [
        CandidateListing(
            source_id=cand['source_id'],
            title=cand.get('title', ''),
            url=cand.get('url'),
            payload=cand.get('extraction'),
            evidence=listing_evidence(cand['url']) if cand.get('url') else None,
        )
        for cand in data.get('candidates', [])
    ]
    return data.get('product_name', ''), schema, frames, candidates


def main():
    parser = argparse.ArgumentParser(description='Run a recorded comparison batch and export the report.')
    parser.add_argument('fixture', nargs='?', default=DEFAULT_FIXTURE)
    parser.add_argument('-o', '--output', default='comparison_report.xlsx')
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    product_name, schema, frames, candidates = load_batch(args.fixture)
    logger.info("Loaded %d frame(s) and %d candidate(s) for %s", len(frames), len(candidates), schema.key)

    batch = compare_batch(frames, candidates, replay_oracle, schema, settings=settings)
    metrics = compute_batch_metrics(batch, schema.rules.min_match_confidence)

    print("=" * 70)
    print(f"COMPARISON REPORT: {product_name or schema.key}")
    print("=" * 70)
    print(f"Reference profile: {metrics['profile_completeness']:.0f}% complete, "
          f"confidence {metrics['profile_confidence']:.1f} from {metrics['source_count']} source(s)")
    if batch.failed_sources:
        print(f"Dropped sources:    {', '.join(batch.failed_sources)}")
    if batch.failed_candidates:
        print(f"Dropped candidates: {', '.join(batch.failed_candidates)}")
    print()

    for result in batch.results:
        marker = 'CAPPED' if result.was_capped else ('LOW CONF' if result.low_confidence else 'OK')
        print(f"  #{result.rank} [{result.final_score:5.1f} / raw {result.raw_score:5.1f}] {marker:<8} {result.title}")
        for flag in result.flags:
            print(f"         - {flag}")

    print()
    print(f"Confident matches: {metrics['confident_count']}/{metrics['total_candidates']}  "
          f"capped: {metrics['capped_count']}  tiebreak needed: {metrics['tiebreak_needed']}")

    export_results(batch, args.output, schema.rules.min_match_confidence)
    print(f"\nReport written to {args.output}")


if __name__ == '__main__':
    main()
