import pytest

from product_matcher.evidence import frame_evidence
from product_matcher.exceptions import ObservationParseError
from product_matcher.observations import (
    DEFAULT_SOURCE_CONFIDENCE,
    AttributeReading,
    SourceObservation,
    coerce_confidence,
    parse_oracle_output,
)


@pytest.mark.parametrize("raw, expected", [
    (0.9, 90.0),
    (1, 100.0),
    (0, 0.0),
    (85, 85.0),
    ("72", 72.0),
    (150, 100.0),
    (-5, 0.0),
    (None, DEFAULT_SOURCE_CONFIDENCE),
    ("high", DEFAULT_SOURCE_CONFIDENCE),
    (float('nan'), DEFAULT_SOURCE_CONFIDENCE),
    (True, DEFAULT_SOURCE_CONFIDENCE),
])
def test_coerce_confidence(raw, expected):
    assert coerce_confidence(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw, expected", [
    (0.5, 50.0),
    (1, 1.0),
    (0, 0.0),
    (95, 95.0),
    (None, None),
])
def test_reading_confidence_scale(raw, expected):
    assert coerce_confidence(raw, default=None, unit_interval=False) == expected


class TestParseOracleOutput:
    def test_flat_camel_case_shape(self, tops_schema):
        raw = {
            'primaryColor': 'Olive Green',
            'neckline': 'not_visible',
            'sleeveLength': 'long',
            'hasButtons': 'no',
            'confidence': 0.9,
            'visibilityNotes': 'Hem hidden',
        }
        obs = parse_oracle_output(raw, tops_schema, 'frame-1', evidence=frame_evidence(1, 0.5))

        assert obs.source_id == 'frame-1'
        assert obs.confidence == pytest.approx(90.0)
        assert obs.visibility_notes == 'Hem hidden'
        assert obs.value('primary_color') == 'Olive Green'
        assert obs.value('sleeve_length') == 'long'
        assert not obs.reading('neckline').observed
        assert obs.reading('has_buttons') == AttributeReading(value=False, observed=True)
        assert obs.evidence.frame_index == 1

    def test_every_schema_attribute_gets_a_reading(self, tops_schema):
        obs = parse_oracle_output({}, tops_schema, 'frame-1')
        assert set(obs.readings) == set(tops_schema.attribute_names)
        assert not any(r.observed for r in obs.readings.values())
        assert obs.confidence == DEFAULT_SOURCE_CONFIDENCE

    def test_nested_shape_with_reading_confidence(self, tops_schema):
        raw = {
            'attributes': {
                'primary_color': {'value': 'olive', 'confidence': 0.8},
                'neckline': {'value': 'crew', 'confidence': 95},
                'fit': {'value': 'relaxed', 'observed': False},
            },
            'confidence': 60,
        }
        obs = parse_oracle_output(raw, tops_schema, 'frame-2')
        assert obs.reading('primary_color').confidence == pytest.approx(80.0)
        assert obs.reading('neckline').confidence == pytest.approx(95.0)
        assert not obs.reading('fit').observed
        assert obs.confidence == 60

    @pytest.mark.parametrize("raw_value", ['maybe', 'unknown', None, {'nested': 1}])
    def test_unparseable_boolean_is_not_observed(self, tops_schema, raw_value):
        obs = parse_oracle_output({'has_zipper': raw_value}, tops_schema, 'frame-3')
        assert not obs.reading('has_zipper').observed

    @pytest.mark.parametrize("raw_value, expected", [(True, True), ('Yes', True), (0, False), ('false', False)])
    def test_boolean_coercion(self, tops_schema, raw_value, expected):
        obs = parse_oracle_output({'has_zipper': raw_value}, tops_schema, 'frame-3')
        assert obs.value('has_zipper') is expected

    def test_list_values_are_joined(self, tops_schema):
        obs = parse_oracle_output({'primary_color': ['olive', None, 'cream']}, tops_schema, 'frame-4')
        assert obs.value('primary_color') == 'olive, cream'

    def test_none_is_an_observed_value(self, sneakers_schema):
        obs = parse_oracle_output({'features': 'none', 'brand': 'not_visible'}, sneakers_schema, 'frame-4')
        assert obs.reading('features').observed
        assert obs.value('features') == 'none'
        assert not obs.reading('brand').observed

    def test_mapping_without_value_is_not_observed(self, tops_schema):
        obs = parse_oracle_output({'neckline': {'shape': 'crew'}}, tops_schema, 'frame-5')
        assert not obs.reading('neckline').observed

    def test_non_string_notes_dropped(self, tops_schema):
        obs = parse_oracle_output({'visibilityNotes': ['a', 'b']}, tops_schema, 'frame-6')
        assert obs.visibility_notes == ''

    @pytest.mark.parametrize("raw", ["plain text answer", None, ["list"], 42])
    def test_non_mapping_rejected(self, tops_schema, raw):
        with pytest.raises(ObservationParseError):
            parse_oracle_output(raw, tops_schema, 'frame-7')

    def test_parse_error_is_value_error(self, tops_schema):
        with pytest.raises(ValueError):
            parse_oracle_output("oops", tops_schema, 'frame-7')


class TestSourceObservation:
    def test_from_values_marks_placeholders_not_observed(self):
        obs = SourceObservation.from_values(
            'cand-1', {'neckline': None, 'fit': 'not_visible', 'has_buttons': False, 'pattern': 'solid'}
        )
        assert not obs.reading('neckline').observed
        assert not obs.reading('fit').observed
        assert obs.reading('has_buttons').observed
        assert obs.value('has_buttons') is False
        assert obs.value('pattern') == 'solid'
        assert obs.confidence == 100.0

    def test_missing_attribute_is_not_observed(self):
        obs = SourceObservation.from_values('cand-1', {})
        assert obs.value('neckline') is None
        assert not obs.reading('neckline').observed

    def test_frozen(self):
        obs = SourceObservation.from_values('cand-1', {'fit': 'relaxed'})
        with pytest.raises(Exception):
            obs.source_id = 'other'
