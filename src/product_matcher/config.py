"""
Runtime settings.

Numeric matching policy (weights, caps, synonym tables) lives in the schema
YAML files, not here. This module only holds process-level knobs, read from
the environment:

    PRODUCT_MATCHER_SCHEMA_DIR         extra directory of schema YAML files
    PRODUCT_MATCHER_MAX_WORKERS        bounded concurrency for extraction calls
    PRODUCT_MATCHER_LOG_LEVEL          logging level name for scripts
    PRODUCT_MATCHER_TIEBREAK_THRESHOLD points gap that triggers a tiebreak
    PRODUCT_MATCHER_TIEBREAK_MIN_SCORE only tiebreak when the top score is this high
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_MAX_WORKERS = 4
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_TIEBREAK_THRESHOLD = 5.0    # top two within 5 points -> close call
DEFAULT_TIEBREAK_MIN_SCORE = 75.0   # only worth a tiebreak between good matches

ENV_PREFIX = "PRODUCT_MATCHER_"


@dataclass(frozen=True)
class Settings:
    schema_dir: Optional[str] = None
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = DEFAULT_LOG_LEVEL
    tiebreak_threshold: float = DEFAULT_TIEBREAK_THRESHOLD
    tiebreak_min_score: float = DEFAULT_TIEBREAK_MIN_SCORE


def _env_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables (os.environ by default)."""
    env = os.environ if env is None else env

    max_workers = _env_number(env, "MAX_WORKERS", DEFAULT_MAX_WORKERS, int)
    if max_workers < 1:
        raise ValueError(f"{ENV_PREFIX}MAX_WORKERS must be >= 1, got {max_workers}")

    return Settings(
        schema_dir=env.get(ENV_PREFIX + "SCHEMA_DIR") or None,
        max_workers=max_workers,
        log_level=(env.get(ENV_PREFIX + "LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        tiebreak_threshold=_env_number(env, "TIEBREAK_THRESHOLD", DEFAULT_TIEBREAK_THRESHOLD, float),
        tiebreak_min_score=_env_number(env, "TIEBREAK_MIN_SCORE", DEFAULT_TIEBREAK_MIN_SCORE, float),
    )
