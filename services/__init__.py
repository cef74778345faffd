# services/__init__.py
"""Services package for the Bid Evaluation Engine."""

from .validator import BidValidator
from .auditor import ArithmeticAuditor
from .price_matrix import PriceMatrixBuilder, MarketAnalyzer
from .scorer import QualityScorer, TimeScorer
from .collusion import CollusionAnalyzer, CollusionFindings
from .suspicion import SuspicionDetector
from .ranking import Ranker
from .game_theory import GameTheoryAnalyzer
from .explainer import Explainer
from .observer import Observer
from .memory import MemoryStore, get_memory_store

__all__ = [
    "BidValidator", "ArithmeticAuditor", "PriceMatrixBuilder", "MarketAnalyzer",
    "QualityScorer", "TimeScorer", "CollusionAnalyzer", "CollusionFindings",
    "SuspicionDetector", "Ranker", "GameTheoryAnalyzer",
    "Explainer", "Observer", "MemoryStore", "get_memory_store"
]
