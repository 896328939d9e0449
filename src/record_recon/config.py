"""Configuration loader and validation for reconciliation settings."""

from pathlib import Path
from typing import Any, Literal, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class FieldWeights(BaseModel):
    """Weight of each compared field in the confidence score."""

    transaction_id: float = 40
    reference_number: float = 35
    amount: float = 20
    date: float = 5

    @model_validator(mode="after")
    def _check_total(self) -> "FieldWeights":
        values = (self.transaction_id, self.reference_number, self.amount, self.date)
        if any(v < 0 for v in values):
            raise ValueError("field weights must be non-negative")
        if abs(sum(values) - 100) > 1e-9:
            raise ValueError(f"field weights must sum to 100, got {sum(values)}")
        return self


class MatchingConfig(BaseModel):
    """
    Thresholds used by the matcher and scorer.

    A dump of this model is stored on every reconciliation result so a run
    can be reproduced after the configuration changes.
    """

    exact_match_threshold: float = Field(default=100, ge=0, le=100)
    partial_match_threshold: float = Field(default=98, ge=0, le=100)
    amount_variance_percentage: float = Field(default=2, ge=0)
    exact_date_tolerance_seconds: float = Field(default=1, gt=0)
    field_weights: FieldWeights = Field(default_factory=FieldWeights)
    tie_break_key: Literal["record_id", "retrieval_order"] = "record_id"


class InputConfig(BaseModel):
    """Configuration for loading canonical record CSV files."""

    encoding: str = "utf-8"
    delimiter: str = ","
    date_format: Optional[str] = None
    column_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "id": "id",
            "transaction_id": "transactionId",
            "reference_number": "referenceNumber",
            "amount": "amount",
            "date": "date",
        }
    )


class AuditConfig(BaseModel):
    """Configuration for the audit trail."""

    enabled: bool = True
    log_file: Optional[str] = None


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return ReconConfig().model_dump(exclude={"config_file_path"})


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be read or holds invalid values
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read configuration: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {config_path}"
            )

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    yaml_content = """# Record reconciliation configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(
        get_default_config(), default_flow_style=False, sort_keys=False
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
