"""
Payee Resolution Module

Turns raw bank payee text into a canonical payee and a budget category:
- Match and category caches
- Fuzzy matching against known payees (oracle-verified)
- Oracle disambiguation and identification
"""

from payee_engine.resolution.service import SuggestionService
from payee_engine.resolution.waterfall import (
    CategoryResolution,
    PayeeResolution,
    ResolutionResult,
    ResolutionStep,
    ResolutionWaterfall,
    ResultSource,
)

__all__ = [
    "CategoryResolution",
    "PayeeResolution",
    "ResolutionResult",
    "ResolutionStep",
    "ResolutionWaterfall",
    "ResultSource",
    "SuggestionService",
]
