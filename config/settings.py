"""
Payee Engine - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{PROJECT_ROOT}/data/payee_engine.db"
    )

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=True)
    LOG_DIR: str = Field(default=str(PROJECT_ROOT / "logs"))

    # LLM oracle
    ANTHROPIC_API_KEY: str = Field(default="")
    ORACLE_MODEL: str = Field(default="claude-sonnet-4-20250514")
    ORACLE_MAX_TOKENS: int = Field(default=1024)
    ORACLE_WEB_SEARCH: bool = Field(default=True)
    ORACLE_WEB_SEARCH_MAX_USES: int = Field(default=3)

    # Payee matching
    PAYEE_ALIASES_PATH: str = Field(
        default=str(PROJECT_ROOT / "config" / "payee_aliases.yaml")
    )
    FUZZY_HIGH_CONFIDENCE: int = Field(default=85)
    FUZZY_MINIMUM_CANDIDATE: int = Field(default=50)
    FUZZY_MAX_DISAMBIGUATION: int = Field(default=5)
    SIMILAR_PAYEE_MIN_SCORE: int = Field(default=60)
    SIMILAR_PAYEE_LIMIT: int = Field(default=3)
    CACHE_CONFIDENCE_THRESHOLD: float = Field(default=0.85)

    # Payee merge clustering
    CLUSTER_MIN_SCORE: int = Field(default=92)
    CLUSTER_ORACLE_MIN_SCORE: int = Field(default=80)
    CLUSTER_REFINE_MIN_SIZE: int = Field(default=5)
    CLUSTER_NOISE_DIGIT_RUN: int = Field(default=4)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
