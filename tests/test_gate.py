import pytest

from conftest import observation
from product_matcher.fusion import fuse
from product_matcher.gate import REASON_NOT_OBSERVED, REASON_REFERENCE_UNKNOWN, check_attribute, check_critical


def _gate(schema, reference_values, candidate_values):
    fused = fuse([observation('frame-a', reference_values)], schema)
    return check_critical(fused, observation('cand-1', candidate_values), schema)


def test_checks_every_deal_breaker(tops_schema, sweater):
    result = _gate(tops_schema, sweater, sweater)
    assert [c.attribute for c in result.checks] == ['neckline', 'sleeve_length', 'body_length']
    assert not result.any_mismatch
    assert result.mismatches == ()


def test_synonyms_match(tops_schema, sweater):
    candidate = dict(sweater, neckline='Crew Neck', sleeve_length='long sleeve', body_length='hip length')
    result = _gate(tops_schema, sweater, candidate)
    assert not result.any_mismatch
    neckline = result.checks[0]
    assert neckline.ref_normalized == 'crew'
    assert neckline.cand_normalized == 'crew'
    assert neckline.cand_value == 'Crew Neck'


def test_different_group_is_mismatch(tops_schema, sweater):
    result = _gate(tops_schema, sweater, dict(sweater, neckline='mock neck'))
    assert result.any_mismatch
    (mismatch,) = result.mismatches
    assert mismatch.attribute == 'neckline'
    assert mismatch.label == 'neckline'
    assert mismatch.mismatch_reason == 'crew vs mock'
    assert not mismatch.reference_unknown


def test_unknown_reference_never_matches(tops_schema, sweater):
    reference = dict(sweater, neckline=None)
    result = _gate(tops_schema, reference, sweater)
    (mismatch,) = result.mismatches
    assert mismatch.attribute == 'neckline'
    assert mismatch.reference_unknown
    assert mismatch.mismatch_reason == REASON_REFERENCE_UNKNOWN
    assert mismatch.ref_value is None


def test_candidate_not_observed_is_mismatch(tops_schema, sweater):
    result = _gate(tops_schema, sweater, dict(sweater, body_length='not_visible'))
    (mismatch,) = result.mismatches
    assert mismatch.attribute == 'body_length'
    assert mismatch.mismatch_reason == REASON_NOT_OBSERVED


def test_unrecognised_value_is_mismatch(tops_schema, sweater):
    result = _gate(tops_schema, sweater, dict(sweater, neckline='asymmetric'))
    (mismatch,) = result.mismatches
    assert mismatch.cand_normalized is None
    assert 'not recognised' in mismatch.mismatch_reason


def test_sneaker_deal_breakers(sneakers_schema):
    reference = {'sneaker_type': 'retro court', 'height': 'low top', 'closure': 'laces'}
    candidate = {'sneaker_type': 'tennis', 'height': 'high-top', 'closure': 'lace-up'}
    result = _gate(sneakers_schema, reference, candidate)
    assert [c.attribute for c in result.mismatches] == ['height']


@pytest.mark.parametrize("ref, cand, matches", [
    (True, 'yes', True),
    (False, 'no', True),
    (True, False, False),
])
def test_boolean_deal_breaker(neckline_schema, ref, cand, matches):
    attr = neckline_schema.attribute('neckline').model_copy(
        update={'name': 'has_hood', 'label': 'hood', 'kind': 'boolean', 'synonym_groups': {}}
    )
    assert check_attribute(attr, ref, cand).matches is matches
