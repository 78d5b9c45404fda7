import pandas as pd
import pytest

from conftest import SWEATER, observation
from product_matcher.config import Settings
from product_matcher.pipeline import compare_observations
from product_matcher.reporting import (
    RESULT_COLUMNS,
    SHEET_BREAKDOWN,
    SHEET_PROFILE,
    SHEET_RANKED,
    SHEET_SUMMARY,
    breakdown_to_frame,
    compute_batch_metrics,
    export_results,
    profile_to_frame,
    results_to_frame,
)


@pytest.fixture
def batch(tops_schema):
    reference = [
        observation('frame-a', SWEATER, confidence=80),
        observation('frame-b', dict(SWEATER, primary_color='khaki'), confidence=60),
    ]
    candidates = [
        observation('exact', SWEATER),
        observation('mock', dict(SWEATER, neckline='mock neck')),
        observation('red', dict(SWEATER, primary_color='red', color_tone='bright', knit_type='jersey')),
    ]
    return compare_observations(
        reference, candidates, tops_schema,
        titles={'exact': 'Cable Crew Sweater'},
        settings=Settings(),
        failed_candidates=['broken'],
    )


@pytest.fixture
def empty_batch(tops_schema):
    return compare_observations([], [], tops_schema, settings=Settings())


def test_results_frame(batch):
    df = results_to_frame(batch)
    assert list(df.columns) == RESULT_COLUMNS
    assert df['candidate_id'].tolist() == ['exact', 'mock', 'red']
    assert df['rank'].tolist() == [1, 2, 3]
    assert df.loc[0, 'title'] == 'Cable Crew Sweater'
    mock = df.loc[1]
    assert bool(mock['was_capped'])
    assert mock['critical_mismatches'] == 'neckline'
    assert 'Similar style but different neckline' in mock['flags']


def test_breakdown_frame(batch, tops_schema):
    df = breakdown_to_frame(batch)
    assert len(df) == 3 * len(tops_schema.attributes)
    mock_rows = df[df['candidate_id'] == 'mock']
    # uncapped accounting is preserved for capped items
    assert mock_rows['points'].sum() == pytest.approx(90)


def test_profile_frame(batch):
    df = profile_to_frame(batch.profile).set_index('attribute')
    assert df.loc['primary_color', 'value'] == 'olive green'
    assert df.loc['primary_color', 'source_id'] == 'frame-a'
    assert 'khaki (frame-b, 60)' in df.loc['primary_color', 'alternatives']


def test_batch_metrics(batch):
    metrics = compute_batch_metrics(batch)
    assert metrics['total_candidates'] == 3
    assert metrics['confident_count'] == 1
    assert metrics['confident_rate'] == pytest.approx(33.3)
    assert metrics['capped_count'] == 1
    assert metrics['low_confidence_count'] == 0
    assert metrics['top_final_score'] == 100
    assert metrics['failed_candidates'] == 1
    assert metrics['profile_completeness'] == 100
    assert not metrics['insufficient_evidence']


def test_metrics_for_empty_batch(empty_batch):
    metrics = compute_batch_metrics(empty_batch)
    assert metrics['total_candidates'] == 0
    assert metrics['confident_rate'] == 0.0
    assert metrics['insufficient_evidence']


def test_export_results(batch, tmp_path):
    path = tmp_path / 'report.xlsx'
    export_results(batch, path)
    sheets = pd.read_excel(path, sheet_name=None)
    assert set(sheets) == {SHEET_RANKED, SHEET_BREAKDOWN, SHEET_PROFILE, SHEET_SUMMARY}
    assert len(sheets[SHEET_RANKED]) == 3
    summary = sheets[SHEET_SUMMARY].set_index('metric')['value']
    assert int(summary['capped_count']) == 1


def test_export_empty_batch(empty_batch, tmp_path):
    path = tmp_path / 'empty.xlsx'
    export_results(empty_batch, path)
    sheets = pd.read_excel(path, sheet_name=None)
    assert sheets[SHEET_RANKED].empty
    assert len(sheets[SHEET_PROFILE]) == 11
