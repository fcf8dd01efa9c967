"""
Configuration settings for the value-set engine.

Reads paths and tuning knobs from the environment (or a .env file in the
working directory) and provides typed settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


PACKAGE_DIR = Path(__file__).parent
PROJECT_ROOT = PACKAGE_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"

# Target false-positive rate for generated membership indexes
DEFAULT_FALSE_POSITIVE_RATE = 0.001


class Settings(BaseSettings):
    """Engine settings loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Vocabulary store (UMLS-style mrconso/mrsat/mrrel)
    vocabulary_database_url: str = Field(
        default=f"sqlite:///{PROJECT_ROOT / 'resources' / 'terminology' / 'umls.db'}",
        alias="VOCABULARY_DATABASE_URL",
        description="SQLAlchemy URL of the vocabulary database"
    )

    # Source documents
    code_system_dir: Path = Field(
        default=PROJECT_ROOT / "resources" / "terminology" / "code_systems",
        alias="CODE_SYSTEM_DIR",
        description="Directory holding JSON CodeSystem files named by encoded URL"
    )
    value_set_dir: Path = Field(
        default=PROJECT_ROOT / "resources" / "terminology" / "value_sets",
        alias="VALUE_SET_DIR",
        description="Directory holding FHIR ValueSet JSON documents"
    )
    bcp47_registry_path: Optional[Path] = Field(
        default=PROJECT_ROOT / "resources" / "terminology" / "language-subtag-registry",
        alias="BCP47_REGISTRY_PATH",
        description="IANA language subtag registry file"
    )

    # Outputs
    validator_output_dir: Path = Field(
        default=PROJECT_ROOT / "resources" / "validators",
        alias="VALIDATOR_OUTPUT_DIR",
    )

    # Expansion behaviour
    use_expansions: bool = Field(
        default=True,
        alias="USE_EXPANSIONS",
        description="Trust pre-computed expansions unless too costly or unclosed"
    )
    bloom_false_positive_rate: float = Field(
        default=DEFAULT_FALSE_POSITIVE_RATE,
        alias="BLOOM_FALSE_POSITIVE_RATE",
        gt=0.0,
        lt=1.0,
    )

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @computed_field
    @property
    def bloom_dir(self) -> Path:
        """Directory for serialized membership indexes."""
        return self.validator_output_dir / "bloom"

    @computed_field
    @property
    def csv_dir(self) -> Path:
        """Directory for delimited-text exports."""
        return self.validator_output_dir / "csv"

    @property
    def manifest_path(self) -> Path:
        return self.validator_output_dir / "manifest.yml"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
