"""Configuration models using Pydantic for validation."""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import os

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024


class ScrapeConfig(BaseModel):
    """Where to scrape from and the limits to apply."""
    url: Optional[str] = None
    file: Optional[str] = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    http_config_file: Optional[str] = None

    @field_validator('timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeout_s must be positive")
        return v

    @field_validator('max_body_size')
    @classmethod
    def validate_max_body_size(cls, v):
        if v <= 0:
            raise ValueError("max_body_size must be positive")
        return v


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_file: Optional[str] = None


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_url := os.getenv('SCRAPE_URL'):
        raw_config.setdefault('scrape', {})['url'] = env_url

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
