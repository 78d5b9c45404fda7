"""
Performance benchmark for fusion and scoring.

Generates synthetic frame observations and candidate listings for a bundled
category schema, then times:
1. fuse() over N frames
2. score() + rank_candidates() over M candidates
3. The same batch with typo-tolerant normalization switched on

Usage:
    python scripts/benchmark_scorer.py [--frames 12] [--candidates 200] [--schema Clothing:Tops]

Output:
    - Mean / p95 timing per stage
    - Score distribution of the synthetic candidates
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import argparse
import time
from typing import Dict, List

import numpy as np

from product_matcher.config import load_settings
from product_matcher.fusion import fuse
from product_matcher.logging_config import configure_logging
from product_matcher.observations import SourceObservation
from product_matcher.schemas import KIND_BOOLEAN, KIND_NUMBER, CategorySchema, get_schema
from product_matcher.scorer import rank_candidates, score

NOT_VISIBLE_RATE = 0.25   # share of frame readings the extractor could not see
DRIFT_RATE = 0.2          # share of candidate attributes that differ from the reference


def _variants(schema: CategorySchema) -> Dict[str, List[List[str]]]:
    """attribute -> list of synonym groups (each a list of raw strings)."""
    table = {}
    for attr in schema.attributes:
        groups = attr.matching_groups
        if groups:
            table[attr.name] = [[token] + list(variants) for token, variants in groups.items()]
    return table


def _pick(rng: np.random.Generator, attr, variants) -> object:
    if attr.kind == KIND_BOOLEAN:
        return bool(rng.integers(0, 2))
    if attr.kind == KIND_NUMBER:
        return float(rng.integers(1, 20))
    groups = variants.get(attr.name)
    if not groups:
        return f"feature {int(rng.integers(0, 5))}"
    group = groups[int(rng.integers(0, len(groups)))]
    return group[int(rng.integers(0, len(group)))]


def generate_reference_frames(schema: CategorySchema, n_frames: int, rng: np.random.Generator) -> List[SourceObservation]:
    variants = _variants(schema)
    truth = {attr.name: _pick(rng, attr, variants) for attr in schema.attributes}

    frames = []
    for i in range(n_frames):
        values = {
            name: (None if rng.random() < NOT_VISIBLE_RATE else value)
            for name, value in truth.items()
        }
        confidence = float(np.clip(rng.normal(75, 12), 5, 100))
        frames.append(SourceObservation.from_values(f"frame-{i:03d}", values, confidence=confidence))
    return frames


def generate_candidates(schema: CategorySchema, reference: SourceObservation, n: int,
                        rng: np.random.Generator) -> List[SourceObservation]:
    variants = _variants(schema)
    candidates = []
    for i in range(n):
        values = {}
        for attr in schema.attributes:
            ref_value = reference.value(attr.name)
            if ref_value is None or rng.random() < DRIFT_RATE:
                values[attr.name] = _pick(rng, attr, variants)
            else:
                values[attr.name] = ref_value
        candidates.append(SourceObservation.from_values(f"cand-{i:04d}", values))
    return candidates


def time_stage(fn, repeats: int) -> np.ndarray:
    timings = []
    for _ in range(repeats):
        start = time.perf_counter()
        fn()
        timings.append((time.perf_counter() - start) * 1000)
    return np.array(timings)


def report(label: str, timings: np.ndarray):
    print(f"  {label:<32} mean {timings.mean():8.2f} ms   p95 {np.percentile(timings, 95):8.2f} ms")


def main():
    parser = argparse.ArgumentParser(description=__doc__.split('\n\n')[0])
    parser.add_argument('--frames', type=int, default=12)
    parser.add_argument('--candidates', type=int, default=200)
    parser.add_argument('--repeats', type=int, default=20)
    parser.add_argument('--schema', default='Clothing:Tops')
    parser.add_argument('--seed', type=int, default=7)
    args = parser.parse_args()

    configure_logging(load_settings().log_level)
    rng = np.random.default_rng(args.seed)
    schema = get_schema(args.schema)

    frames = generate_reference_frames(schema, args.frames, rng)
    profile = fuse(frames, schema)
    reference = SourceObservation.from_values(
        'reference', {name: attr.value if attr.resolved else None for name, attr in profile.attributes.items()}
    )
    candidates = generate_candidates(schema, reference, args.candidates, rng)

    typo_schema = schema.model_copy(update={'rules': schema.rules.model_copy(update={'typo_cutoff': 85.0})})

    print("=" * 70)
    print(f"BENCHMARK: {schema.key}  ({args.frames} frames, {args.candidates} candidates)")
    print("=" * 70)
    print(f"  profile completeness {profile.completeness:.0f}%, confidence {profile.overall_confidence:.1f}")
    print()

    report('fuse', time_stage(lambda: fuse(frames, schema), args.repeats))
    report('score + rank', time_stage(
        lambda: rank_candidates([score(profile, c, schema) for c in candidates]), args.repeats))
    report('score + rank (typo tolerant)', time_stage(
        lambda: rank_candidates([score(profile, c, typo_schema) for c in candidates]), args.repeats))

    ranked = rank_candidates([score(profile, c, schema) for c in candidates])
    finals = np.array([r.final_score for r in ranked])
    capped = sum(1 for r in ranked if r.was_capped)

    print()
    print("Score distribution:")
    print(f"  min {finals.min():.1f}  median {np.median(finals):.1f}  max {finals.max():.1f}")
    print(f"  capped by a deal-breaker: {capped}/{len(ranked)} ({capped / len(ranked) * 100:.1f}%)")
    print(f"  at or above {schema.rules.min_match_confidence:g}: {int((finals >= schema.rules.min_match_confidence).sum())}")


if __name__ == '__main__':
    main()
