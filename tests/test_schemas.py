import pytest

from product_matcher.exceptions import SchemaNotFoundError, SchemaValidationError
from product_matcher.schemas import (
    BOOLEAN_GROUPS,
    SchemaRegistry,
    build_extraction_prompt,
    bundled_families,
    default_registry,
    infer_subcategory,
    parse_schema,
)


def _widget_schema(**overrides):
    data = {
        'category': 'Test',
        'subcategory': 'Widgets',
        'attributes': [
            {'name': 'color', 'kind': 'string', 'weight': 60, 'synonyms': 'color'},
            {'name': 'size', 'kind': 'enum', 'values': ['s', 'm', 'l'], 'weight': 40, 'deal_breaker': True},
        ],
    }
    data.update(overrides)
    return data


class TestBundledSchemas:
    def test_both_worked_examples_ship(self):
        keys = default_registry().keys()
        assert 'Clothing:Tops' in keys
        assert 'Footwear:Sneakers' in keys

    @pytest.mark.parametrize("key", ['Clothing:Tops', 'Footwear:Sneakers'])
    def test_weights_sum_to_100(self, key):
        schema = default_registry().get(key)
        assert sum(a.weight for a in schema.attributes) == pytest.approx(100)

    def test_tops_deal_breakers(self, tops_schema):
        assert [a.name for a in tops_schema.deal_breakers] == ['neckline', 'sleeve_length', 'body_length']
        assert tops_schema.rules.critical_mismatch_cap == 65

    def test_labels(self, tops_schema):
        assert tops_schema.attribute('sleeve_length').label == 'sleeve length'
        assert tops_schema.attribute('has_buttons').label == 'buttons'
        assert tops_schema.attribute('pattern').label == 'pattern'

    def test_family_credit_policy(self, tops_schema):
        assert tops_schema.family_credit_for(tops_schema.attribute('primary_color')) == 0.7
        assert tops_schema.family_credit_for(tops_schema.attribute('color_tone')) == 0.5
        assert tops_schema.family_credit_for(tops_schema.attribute('neckline')) == 1.0

    def test_shared_table_is_resolved(self, tops_schema):
        groups = tops_schema.attribute('primary_color').synonym_groups
        assert 'khaki' in groups['green']

    def test_unknown_attribute(self, tops_schema):
        with pytest.raises(KeyError):
            tops_schema.attribute('heel_height')


class TestRegistry:
    def test_lookup_is_case_insensitive(self):
        assert default_registry().get(' clothing:tops ').key == 'Clothing:Tops'
        assert default_registry().get_for('Footwear', 'Sneakers').subcategory == 'Sneakers'

    def test_unknown_key_raises(self):
        with pytest.raises(SchemaNotFoundError) as exc:
            default_registry().get('Clothing:Dresses')
        assert isinstance(exc.value, KeyError)
        assert 'Clothing:Tops' in str(exc.value)

    def test_register_and_subcategories(self):
        registry = SchemaRegistry([parse_schema(_widget_schema(), bundled_families())])
        assert 'test:widgets' in registry
        assert len(registry) == 1
        assert registry.subcategories('Test') == ['Widgets']

    def test_duplicate_register_rejected(self):
        schema = parse_schema(_widget_schema(), bundled_families())
        registry = SchemaRegistry([schema])
        with pytest.raises(SchemaValidationError):
            registry.register(schema)
        registry.register(schema, replace=True)

    def test_load_directory(self, tmp_path):
        (tmp_path / 'families.yaml').write_text("size_words:\n  small: [s, small, petite]\n")
        (tmp_path / 'gadgets.yaml').write_text(
            "category: Test\n"
            "subcategory: Gadgets\n"
            "attributes:\n"
            "  - name: color\n"
            "    weight: 50\n"
            "    synonyms: color\n"
            "  - name: size\n"
            "    kind: enum\n"
            "    weight: 50\n"
            "    deal_breaker: true\n"
            "    synonyms: size_words\n"
        )
        registry = SchemaRegistry()
        assert registry.load_directory(tmp_path) == 1
        schema = registry.get('Test:Gadgets')
        assert schema.attribute('size').synonym_groups['small'] == ('s', 'small', 'petite')

    def test_load_directory_bad_yaml(self, tmp_path):
        (tmp_path / 'broken.yaml').write_text("category: [unclosed\n")
        with pytest.raises(SchemaValidationError):
            SchemaRegistry().load_directory(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SchemaValidationError):
            SchemaRegistry().load_directory(tmp_path / 'nope')


class TestValidation:
    def test_weights_must_sum_to_100(self):
        data = _widget_schema()
        data['attributes'][0]['weight'] = 50
        with pytest.raises(SchemaValidationError, match='sum to 90'):
            parse_schema(data, bundled_families())

    def test_deal_breaker_must_be_normalizable(self):
        data = _widget_schema()
        data['attributes'][1] = {'name': 'size', 'kind': 'string', 'weight': 40, 'deal_breaker': True}
        with pytest.raises(SchemaValidationError, match='normalizable'):
            parse_schema(data, bundled_families())

    def test_unknown_synonym_table(self):
        data = _widget_schema()
        data['attributes'][0]['synonyms'] = 'no_such_table'
        with pytest.raises(SchemaValidationError, match='no_such_table'):
            parse_schema(data, bundled_families())

    def test_duplicate_attribute(self):
        data = _widget_schema()
        data['attributes'] = [
            {'name': 'color', 'weight': 50},
            {'name': 'color', 'weight': 50},
        ]
        with pytest.raises(SchemaValidationError, match='repeats'):
            parse_schema(data)

    def test_unknown_field_rejected(self):
        data = _widget_schema()
        data['attributes'][0]['wieght'] = 5
        with pytest.raises(SchemaValidationError):
            parse_schema(data, bundled_families())

    def test_enum_needs_values(self):
        data = _widget_schema()
        data['attributes'][1] = {'name': 'size', 'kind': 'enum', 'weight': 40}
        with pytest.raises(SchemaValidationError):
            parse_schema(data)

    def test_schema_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_schema(['not', 'a', 'mapping'])

    def test_implicit_groups(self):
        schema = parse_schema(_widget_schema(), bundled_families())
        assert schema.attribute('size').matching_groups == {'s': ('s',), 'm': ('m',), 'l': ('l',)}


def test_boolean_attributes_use_boolean_groups(tops_schema):
    assert tops_schema.attribute('has_zipper').matching_groups == BOOLEAN_GROUPS


@pytest.mark.parametrize("name, category, expected", [
    ("Chunky Cable Knit Sweater", "Clothing", "Tops"),
    ("Linen Wrap Dress", "Clothing", "Dresses"),
    ("High Rise Straight Jeans", "Clothing", "Bottoms"),
    ("Air Force 1 Low Sneaker", "Footwear", "Sneakers"),
    ("Leather Chelsea Boot", "Footwear", "Boots"),
    ("Ballet Pump", "Footwear", "Heels"),
    ("Suede Ballet Flat", "Footwear", "Flats"),
    ("Gold Hoop Earrings", "Jewelry", None),
])
def test_infer_subcategory(name, category, expected):
    assert infer_subcategory(name, category) == expected


def test_extraction_prompt_lists_every_attribute(tops_schema):
    prompt = build_extraction_prompt(tops_schema)
    for name in tops_schema.attribute_names:
        assert f"- {name}:" in prompt
    assert "not_visible" in prompt
    assert "- has_buttons: true/false" in prompt
