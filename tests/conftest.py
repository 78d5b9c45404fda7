"""Shared fixtures: bundled schemas, a small custom schema and observation helpers."""

import pytest

from product_matcher.observations import SourceObservation
from product_matcher.schemas import bundled_families, get_schema, parse_schema

# A complete, fully matching sweater. Every attribute of Clothing:Tops.
SWEATER = {
    'primary_color': 'olive green',
    'color_tone': 'muted',
    'neckline': 'crew',
    'sleeve_length': 'long',
    'body_length': 'regular',
    'fit': 'relaxed',
    'knit_type': 'cable knit',
    'texture': 'chunky',
    'has_buttons': False,
    'has_zipper': False,
    'pattern': 'solid',
}

# Neckline is the only deal-breaker and is worth 5 points, so a candidate that
# matches everything except the neckline scores exactly 95 raw.
NECKLINE_ONLY_SCHEMA = {
    'category': 'Test',
    'subcategory': 'Knitwear',
    'rules': {'critical_mismatch_cap': 65, 'min_match_confidence': 75},
    'attributes': [
        {'name': 'primary_color', 'kind': 'string', 'weight': 30, 'synonyms': 'color'},
        {'name': 'neckline', 'kind': 'enum', 'weight': 5, 'deal_breaker': True,
         'family_credit': 1.0, 'synonyms': 'neckline'},
        {'name': 'sleeve_length', 'kind': 'enum', 'weight': 25, 'synonyms': 'sleeve_length'},
        {'name': 'knit_type', 'kind': 'string', 'weight': 20, 'synonyms': 'knit'},
        {'name': 'fit', 'kind': 'enum', 'weight': 20, 'synonyms': 'fit'},
    ],
}


def observation(source_id, values, confidence=100.0, **kwargs):
    return SourceObservation.from_values(source_id, values, confidence=confidence, **kwargs)


@pytest.fixture
def tops_schema():
    return get_schema('Clothing:Tops')


@pytest.fixture
def sneakers_schema():
    return get_schema('Footwear:Sneakers')


@pytest.fixture
def neckline_schema():
    return parse_schema(NECKLINE_ONLY_SCHEMA, bundled_families(), source='conftest')


@pytest.fixture
def sweater():
    return dict(SWEATER)
