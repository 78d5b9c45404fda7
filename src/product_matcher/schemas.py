"""
Category attribute schemas and the schema registry.

A CategorySchema says, for one product category/subcategory (e.g.
"Clothing:Tops"), which attributes exist, how many of the 100 points each is
worth, which are deal-breakers, and which raw strings count as the same
thing (synonym groups).

Schemas are configuration, not code:
    - schema_data/families.yaml holds shared synonym tables (colors, metals,
      necklines, ...) that attribute definitions reference by name
    - schema_data/<category>_<subcategory>.yaml holds one schema each
    - every file is validated with pydantic at load time; weights must sum
      to 100 and every deal-breaker must be normalizable, so a malformed
      schema fails fast instead of producing silently wrong scores

Looking up an unknown key raises SchemaNotFoundError. Matching without a
schema is meaningless, so there is no default schema.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .config import load_settings
from .exceptions import SchemaNotFoundError, SchemaValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SCHEMA_DATA_DIR = Path(__file__).resolve().parent / "schema_data"
FAMILIES_FILE = "families.yaml"

TOTAL_POINTS = 100.0
WEIGHT_TOLERANCE = 1e-6

KIND_STRING = "string"
KIND_ENUM = "enum"
KIND_NUMBER = "number"
KIND_BOOLEAN = "boolean"

AttributeKind = Literal["string", "enum", "number", "boolean"]

BOOLEAN_GROUPS: Dict[str, Tuple[str, ...]] = {
    "true": ("true", "yes", "y", "1", "present"),
    "false": ("false", "no", "n", "0", "absent"),
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _default_label(name: str) -> str:
    """'sleeve_length' / 'sleeveLength' -> 'sleeve length'."""
    return _CAMEL_BOUNDARY.sub(" ", name).replace("_", " ").lower()


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class AttributeDefinition(BaseModel):
    """One scored attribute of a category schema."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    label: str = ""
    kind: AttributeKind = KIND_STRING
    required: bool = False
    deal_breaker: bool = False
    weight: float = Field(ge=0.0, le=TOTAL_POINTS)
    synonym_groups: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    values: Tuple[str, ...] = ()
    family_credit: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    mismatch_floor: float = Field(default=0.0, ge=0.0, le=1.0)
    tolerance: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def _fill_label(cls, data):
        if isinstance(data, dict) and not data.get("label") and data.get("name"):
            data = {**data, "label": _default_label(str(data["name"]))}
        return data

    @model_validator(mode="after")
    def _check_shape(self):
        if self.kind == KIND_ENUM and not self.values and not self.synonym_groups:
            raise ValueError(f"enum attribute '{self.name}' needs 'values' or 'synonym_groups'")
        if self.kind in (KIND_NUMBER, KIND_BOOLEAN) and self.synonym_groups:
            raise ValueError(f"{self.kind} attribute '{self.name}' cannot have synonym groups")
        if self.deal_breaker and not self.matching_groups:
            raise ValueError(
                f"deal-breaker '{self.name}' must be normalizable "
                "(synonym groups, enum values or boolean)"
            )
        return self

    @property
    def is_fuzzy(self) -> bool:
        """Graded with match_grade (EXACT / FAMILY / NONE) rather than equality."""
        return self.kind == KIND_STRING or bool(self.synonym_groups)

    @property
    def matching_groups(self) -> Dict[str, Tuple[str, ...]]:
        """Synonym table used by normalize(); enums and booleans get implicit groups."""
        if self.synonym_groups:
            return self.synonym_groups
        if self.kind == KIND_ENUM:
            return {value: (value,) for value in self.values}
        if self.kind == KIND_BOOLEAN:
            return BOOLEAN_GROUPS
        return {}


class MatchingRules(BaseModel):
    """Per-schema thresholds. Defaults are the tuned values from the comparison runs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_match_confidence: float = Field(default=75.0, ge=0.0, le=TOTAL_POINTS)
    critical_mismatch_cap: float = Field(default=65.0, ge=0.0, le=TOTAL_POINTS)
    family_credit: float = Field(default=0.7, ge=0.0, le=1.0)
    substring_min_ratio: float = Field(default=0.4, gt=0.0, le=1.0)
    typo_cutoff: float = Field(default=0.0, ge=0.0, le=100.0)
    min_completeness: float = Field(default=50.0, ge=0.0, le=100.0)


class CategorySchema(BaseModel):
    """Attribute definitions plus matching rules for one category/subcategory."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    category: str = Field(min_length=1)
    subcategory: str = Field(min_length=1)
    description: str = ""
    attributes: Tuple[AttributeDefinition, ...]
    rules: MatchingRules = Field(default_factory=MatchingRules)

    @model_validator(mode="after")
    def _check_attributes(self):
        if not self.attributes:
            raise ValueError(f"schema '{self.key}' has no attributes")
        names = [a.name for a in self.attributes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"schema '{self.key}' repeats attributes: {', '.join(duplicates)}")
        total = sum(a.weight for a in self.attributes)
        if abs(total - TOTAL_POINTS) > WEIGHT_TOLERANCE:
            raise ValueError(f"schema '{self.key}' weights sum to {total:g}, expected {TOTAL_POINTS:g}")
        return self

    @property
    def key(self) -> str:
        return schema_key(self.category, self.subcategory)

    @property
    def attribute_names(self) -> List[str]:
        return [a.name for a in self.attributes]

    @property
    def deal_breakers(self) -> List[AttributeDefinition]:
        return [a for a in self.attributes if a.deal_breaker]

    def attribute(self, name: str) -> AttributeDefinition:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        raise KeyError(f"schema '{self.key}' has no attribute '{name}'")

    def family_credit_for(self, attr: AttributeDefinition) -> float:
        return self.rules.family_credit if attr.family_credit is None else attr.family_credit


def schema_key(category: str, subcategory: str) -> str:
    return f"{category.strip()}:{subcategory.strip()}"


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def _read_yaml(path: Path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SchemaValidationError(f"{path}: invalid YAML ({e})") from e


def load_families(path: Path) -> Dict[str, Dict[str, Tuple[str, ...]]]:
    """Shared synonym tables: table name -> {token: [variants]}."""
    data = _read_yaml(path) or {}
    if not isinstance(data, dict):
        raise SchemaValidationError(f"{path}: expected a mapping of synonym tables")

    families: Dict[str, Dict[str, Tuple[str, ...]]] = {}
    for table_name, groups in data.items():
        if not isinstance(groups, dict):
            raise SchemaValidationError(f"{path}: table '{table_name}' must map tokens to lists")
        families[str(table_name)] = {
            str(token): tuple(str(v) for v in (variants or ())) for token, variants in groups.items()
        }
    return families


def _resolve_synonyms(raw_attr: dict, families: Mapping[str, Mapping[str, Tuple[str, ...]]], source: str) -> dict:
    """Replace an attribute's `synonyms: <table>` reference with the table itself."""
    attr = dict(raw_attr)
    ref = attr.pop("synonyms", None)
    if ref is None:
        return attr
    if ref not in families:
        raise SchemaValidationError(
            f"{source}: attribute '{attr.get('name')}' references unknown synonym table '{ref}'"
        )
    merged = dict(families[ref])
    merged.update(attr.get("synonym_groups") or {})
    attr["synonym_groups"] = merged
    return attr


def parse_schema(data, families: Optional[Mapping] = None, source: str = "<schema>") -> CategorySchema:
    """Validate one schema mapping (as loaded from YAML) into a CategorySchema."""
    if not isinstance(data, dict):
        raise SchemaValidationError(f"{source}: expected a mapping, got {type(data).__name__}")
    families = families or {}
    payload = dict(data)
    raw_attrs = payload.get("attributes")
    if not isinstance(raw_attrs, list):
        raise SchemaValidationError(f"{source}: 'attributes' must be a list")
    payload["attributes"] = [
        _resolve_synonyms(a, families, source) if isinstance(a, dict) else a for a in raw_attrs
    ]
    try:
        return CategorySchema.model_validate(payload)
    except ValidationError as e:
        raise SchemaValidationError(f"{source}: {e}") from e


def load_schema_file(path: Path, families: Optional[Mapping] = None) -> CategorySchema:
    return parse_schema(_read_yaml(path), families, source=str(path))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SchemaRegistry:
    """Category key ("Clothing:Tops") -> validated CategorySchema."""

    def __init__(self, schemas: Iterable[CategorySchema] = ()):
        self._schemas: Dict[str, CategorySchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: CategorySchema, replace: bool = False) -> None:
        lookup = schema.key.lower()
        if lookup in self._schemas and not replace:
            raise SchemaValidationError(f"schema '{schema.key}' is already registered")
        self._schemas[lookup] = schema

    def get(self, key: str) -> CategorySchema:
        schema = self._schemas.get(str(key).strip().lower())
        if schema is None:
            raise SchemaNotFoundError(key, self.keys())
        return schema

    def get_for(self, category: str, subcategory: str) -> CategorySchema:
        return self.get(schema_key(category, subcategory))

    def keys(self) -> List[str]:
        return sorted(s.key for s in self._schemas.values())

    def subcategories(self, category: str) -> List[str]:
        wanted = category.strip().lower()
        return sorted(s.subcategory for s in self._schemas.values() if s.category.lower() == wanted)

    def __contains__(self, key) -> bool:
        return str(key).strip().lower() in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def load_directory(self, directory, replace: bool = False) -> int:
        """
        Register every *.yaml schema in a directory.

        A families.yaml in the same directory extends the bundled synonym
        tables. Returns the number of schemas loaded.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise SchemaValidationError(f"schema directory not found: {directory}")

        families = dict(bundled_families())
        local_families = directory / FAMILIES_FILE
        if local_families.is_file() and directory.resolve() != SCHEMA_DATA_DIR:
            families.update(load_families(local_families))

        count = 0
        for path in sorted(directory.glob("*.yaml")):
            if path.name == FAMILIES_FILE:
                continue
            self.register(load_schema_file(path, families), replace=replace)
            count += 1
        logger.info("Loaded %d category schema(s) from %s", count, directory)
        return count


@lru_cache(maxsize=1)
def bundled_families() -> Dict[str, Dict[str, Tuple[str, ...]]]:
    return load_families(SCHEMA_DATA_DIR / FAMILIES_FILE)


@lru_cache(maxsize=1)
def default_registry() -> SchemaRegistry:
    """Bundled schemas plus any in PRODUCT_MATCHER_SCHEMA_DIR (which may override them)."""
    registry = SchemaRegistry()
    registry.load_directory(SCHEMA_DATA_DIR)
    extra = load_settings().schema_dir
    if extra:
        registry.load_directory(os.path.expanduser(extra), replace=True)
    return registry


def get_schema(key: str) -> CategorySchema:
    """Look up a schema in the default registry; raises SchemaNotFoundError."""
    return default_registry().get(key)


# ---------------------------------------------------------------------------
# Subcategory inference
# ---------------------------------------------------------------------------

_SUBCATEGORY_RULES: Dict[str, Tuple[List[Tuple[re.Pattern, str]], str]] = {
    "clothing": ([
        (re.compile(r"jumpsuit|romper|playsuit|overall"), "Jumpsuits"),
        (re.compile(r"dress|gown"), "Dresses"),
        (re.compile(r"jacket|coat|blazer|cardigan|hoodie|vest|parka|bomber|fleece"), "Outerwear"),
        (re.compile(r"legging|sports bra|yoga|athletic|gym|workout"), "Activewear"),
        (re.compile(r"bikini|swimsuit|swim|bathing|cover-up|rashguard"), "Swimwear"),
        (re.compile(r"bralette|\bbra\b|lingerie|bodysuit|corset|bustier"), "Lingerie"),
        (re.compile(r"lounge|sweatpant|jogger|robe|pajama|sleepwear"), "Loungewear"),
        (re.compile(r"pant|jean|short|skirt|trouser"), "Bottoms"),
    ], "Tops"),
    "footwear": ([
        (re.compile(r"sneaker|trainer|running|basketball|tennis"), "Sneakers"),
        (re.compile(r"heel|pump|stiletto"), "Heels"),
        (re.compile(r"boot|bootie|chelsea|combat"), "Boots"),
        (re.compile(r"loafer|penny|tassel|horsebit|driving"), "Loafers"),
        (re.compile(r"slide|pool"), "Slides"),
        (re.compile(r"mule|clog|backless"), "Mules"),
        (re.compile(r"sandal|flip|gladiator|espadrille|wedge"), "Sandals"),
    ], "Flats"),
}


def infer_subcategory(product_name: str, category: str) -> Optional[str]:
    """
    Guess a subcategory from a product title.

    Returns None for categories without inference rules. The result is a
    name only; the registry may not have a schema for it.

    Examples:
        infer_subcategory("Chunky Cable Knit Sweater", "Clothing") -> "Tops"
        infer_subcategory("Air Force 1 Low Sneaker", "Footwear")  -> "Sneakers"
    """
    rules = _SUBCATEGORY_RULES.get((category or "").strip().lower())
    if rules is None:
        return None
    patterns, fallback = rules
    name = (product_name or "").lower()
    for pattern, subcategory in patterns:
        if pattern.search(name):
            return subcategory
    return fallback


def build_extraction_prompt(schema: CategorySchema) -> str:
    """
    Attribute list for the extraction oracle, derived from the schema.

    The oracle collaborator embeds this in its own prompt; keeping it derived
    means the extractor and the scorer can never disagree on attribute names.
    """
    lines = [
        f"Extract these attributes of the {schema.subcategory.lower()} ({schema.category.lower()}).",
        'Use "not_visible" for anything that cannot be determined.',
        "",
    ]
    for attr in schema.attributes:
        if attr.kind == KIND_BOOLEAN:
            hint = "true/false"
        elif attr.values:
            hint = ", ".join(attr.values)
        elif attr.synonym_groups:
            hint = ", ".join(attr.synonym_groups)
        else:
            hint = attr.kind
        lines.append(f"- {attr.name}: {hint}")
    lines += ["", "Also return confidence (0.0-1.0) and visibilityNotes.", "Respond with flat JSON only."]
    return "\n".join(lines)
