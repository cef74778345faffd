# config.py
"""Configuration settings for the Bid Evaluation Engine."""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from dotenv import load_dotenv

from models import InvalidConfigurationError

load_dotenv()


def get_secret(key: str, default: str = None) -> str:
    """Get a setting from the environment (a .env file is loaded on import)."""
    value = os.getenv(key)
    if value:
        return value
    return default


def _get_float(key: str, default: float) -> float:
    value = get_secret(key)
    return float(value) if value is not None else default


def _get_int(key: str, default: int) -> int:
    value = get_secret(key)
    return int(value) if value is not None else default


def _get_bool(key: str, default: bool) -> bool:
    value = get_secret(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# API Keys (only needed for the optional narrative explanation)
GROQ_API_KEY = get_secret("GROQ_API_KEY")

# Model Settings
GROQ_MODEL = get_secret("GROQ_MODEL", "openai/gpt-oss-120b")

# Persistence
MEMORY_DB_PATH = get_secret("BID_EVAL_DB_PATH", "bid_eval_memory.db")

# Scoring Weights (price-dominant per procurement practice)
DEFAULT_WEIGHTS = {
    "price": 0.70,
    "quality": 0.20,
    "time": 0.10
}

# Risk points per issue type
DEFAULT_RISK_WEIGHTS = {
    "COLLUSION_PATTERN": 30,
    "UNBALANCED_PRICING": 10,
    "UNBALANCED_PRICING_SEVERE": 20,
    "MISSING_DOCUMENTS": 15,
    "ARITHMETIC_ERROR": 5,
    "DEFAULT": 5
}

# Required documents: type code and localized name fragment
REQUIRED_DOCUMENTS = (
    ("offer_letter", "Anschreiben"),
    ("price_sheet", "Preisblatt"),
    ("company_profile", "Firmenprofil"),
    ("references", "Referenzen"),
    ("insurance_proof", "Versicherungsnachweis"),
    ("tax_clearance", "Steuerliche Unbedenklichkeit"),
)

WEIGHT_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class EvaluationConfig:
    """Immutable settings passed explicitly into every evaluation run."""
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    # Formal examination
    deadline: Optional[str] = None
    signature_max_age_days: float = 30

    # Arithmetic
    arithmetic_tolerance: float = 0.01
    default_vat_rate: float = 19.0

    # Quality / time
    project_type: Optional[str] = None
    target_duration: float = 180
    milestone_tolerance_days: float = 7

    # Suspicion thresholds
    suspicious_threshold: float = 0.15
    unbalanced_sigma: float = 2.0
    identical_pricing_threshold: float = 0.95
    graph_edge_threshold: float = 0.5
    community_edge_threshold: float = 0.7
    rotation_threshold: float = 0.6
    rotation_min_records: int = 5
    complementary_overlap_threshold: float = 0.3
    expected_bidders: int = 10
    risk_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RISK_WEIGHTS))

    # Execution
    evaluation_timeout_seconds: float = 60
    max_workers: int = 4
    enable_game_theory: bool = False

    def __post_init__(self):
        missing = {"price", "quality", "time"} - set(self.weights)
        if missing:
            raise InvalidConfigurationError(f"Missing criteria weights: {sorted(missing)}")
        if any(w < 0 for w in self.weights.values()):
            raise InvalidConfigurationError("Criteria weights must be non-negative")
        total = sum(self.weights[k] for k in ("price", "quality", "time"))
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise InvalidConfigurationError(f"Criteria weights must sum to 1, got {total}")
        if self.evaluation_timeout_seconds <= 0:
            raise InvalidConfigurationError("Evaluation timeout must be positive")

    def with_overrides(self, **overrides) -> "EvaluationConfig":
        """Return a copy with some settings replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_env(cls) -> "EvaluationConfig":
        """Build a config from BID_EVAL_* environment variables."""
        return cls(
            weights={
                "price": _get_float("BID_EVAL_WEIGHT_PRICE", DEFAULT_WEIGHTS["price"]),
                "quality": _get_float("BID_EVAL_WEIGHT_QUALITY", DEFAULT_WEIGHTS["quality"]),
                "time": _get_float("BID_EVAL_WEIGHT_TIME", DEFAULT_WEIGHTS["time"])
            },
            deadline=get_secret("BID_EVAL_DEADLINE"),
            project_type=get_secret("BID_EVAL_PROJECT_TYPE"),
            arithmetic_tolerance=_get_float("BID_EVAL_ARITHMETIC_TOLERANCE", 0.01),
            suspicious_threshold=_get_float("BID_EVAL_SUSPICIOUS_THRESHOLD", 0.15),
            expected_bidders=_get_int("BID_EVAL_EXPECTED_BIDDERS", 10),
            evaluation_timeout_seconds=_get_float("BID_EVAL_TIMEOUT_SECONDS", 60),
            max_workers=_get_int("BID_EVAL_MAX_WORKERS", 4),
            enable_game_theory=_get_bool("BID_EVAL_GAME_THEORY", False)
        )
