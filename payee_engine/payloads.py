"""
Schemas for structured oracle replies.

Confidence values are clamped into [0, 1] on validation and blank names or
ids become None; anything else that does not fit is rejected by the oracle
client.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

NAME_FIELDS = ("canonical_payee_name", "category_id", "category_name")


class OraclePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value, info):
        if info.field_name in NAME_FIELDS and isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("*")
    @classmethod
    def clamp_confidence(cls, value, info):
        if info.field_name.endswith("confidence"):
            return max(0.0, min(1.0, value))
        return value

    @field_validator("*", mode="before")
    @classmethod
    def null_reasoning(cls, value, info):
        if info.field_name.endswith("reasoning") and value is None:
            return ""
        return value


class PayeeIdentification(OraclePayload):
    """Who the merchant behind a raw bank string is."""
    canonical_payee_name: Optional[str] = Field(
        default=None, description="Clean, commonly used merchant name"
    )
    confidence: float = Field(description="0.0 to 1.0")
    reasoning: str = Field(default="", description="One or two sentences")


class CategoryProposal(OraclePayload):
    """Which budget category a payee belongs in; ids null when nothing fits."""
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    confidence: float = Field(description="0.0 to 1.0")
    reasoning: str = ""


class MatchVerification(OraclePayload):
    """Verdict on whether a raw payee is the same merchant as a fuzzy match."""
    is_same_merchant: bool
    canonical_payee_name: Optional[str] = None
    payee_confidence: float = 0.0
    payee_reasoning: str = ""
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_confidence: float = 0.0
    category_reasoning: str = ""


class MatchDisambiguation(OraclePayload):
    """
    Choice among numbered candidates.

    match_index is 1-based; null means none of the candidates is the same
    merchant. Category fields may still be filled from general knowledge.
    """
    match_index: Optional[StrictInt] = Field(
        default=None, description="1-based candidate number, or null if none match"
    )
    canonical_payee_name: Optional[str] = None
    payee_confidence: float = 0.0
    payee_reasoning: str = ""
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_confidence: float = 0.0
    category_reasoning: str = ""


class ClusterSplit(BaseModel):
    """Sub-groups of a cluster, as lists of 0-based member indexes."""
    groups: list[list[StrictInt]]
