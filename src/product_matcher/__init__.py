"""
Creator product matcher.

Fuses noisy per-frame attribute observations of a product into one
reference profile and scores shopping candidates against it, with a hard
cap when any deal-breaker attribute disagrees.
"""

from .evidence import Claim, Evidence, create_claim, frame_evidence, listing_evidence, transcript_evidence
from .exceptions import ObservationParseError, ProductMatcherError, SchemaNotFoundError, SchemaValidationError
from .fusion import UNKNOWN, FusedAttribute, FusedProfile, fuse, fuse_claims
from .gate import CriticalCheck, GateResult, check_critical
from .normalizer import GRADE_EXACT, GRADE_FAMILY, GRADE_NONE, match_grade, normalize
from .observations import AttributeReading, SourceObservation, parse_oracle_output
from .pipeline import BatchResult, CandidateListing, ReferenceSource, compare_batch, compare_observations
from .schemas import CategorySchema, SchemaRegistry, default_registry, get_schema, infer_subcategory
from .scorer import ComparisonResult, is_confident_match, needs_tiebreak, rank_candidates, score
from .tiers import VerificationState, confirm, correct, dispute, tier_of

__version__ = "0.1.0"
