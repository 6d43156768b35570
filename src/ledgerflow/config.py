"""
Configuration management (SSOT).

This module defines ALL configuration for ledgerflow.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Store credentials are never logged
- Every external call (store, extractor) is bounded by a timeout
- The account fallback chain is explicit and ordered
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class StoreConfig:
    """REST data store configuration.

    The store exposes PostgREST-style tables (automation_rules, accounts,
    categories, transactions, skipped_messages) under /rest/v1.
    """

    base_url: str
    service_key: str
    timeout_seconds: int = 30
    # Retries apply to idempotent reads only
    max_retries: int = 2


@dataclass
class ExtractorConfig:
    """Language-model extraction configuration (Gemini generateContent API)."""

    api_key: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: int = 30
    # Cache TTL (days)
    cache_ttl_days: int = 7


@dataclass
class CacheConfig:
    """Local SQLite cache settings."""

    db_path: Path = field(default_factory=lambda: Path("data/cache.db"))
    # How long a cached account balance stays fresh
    balance_ttl_seconds: int = 300


@dataclass
class PipelineConfig:
    """Message pipeline settings.

    fallback_institutions is the ordered chain used when the extracted
    institution/last-four cannot be resolved to an account.
    """

    default_user_id: str | None = None
    default_source: str = "api"
    timezone: str = "America/Bogota"
    fallback_institutions: list[str] = field(default_factory=lambda: ["cash", "bancolombia"])
    missing_category_slug: str = "missing"
    transfer_category_slug: str = "transfer"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    store: StoreConfig
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.store.base_url:
            errors.append("store.base_url is required")
        if not self.store.service_key:
            errors.append("store.service_key is required")
        if not self.extractor.api_key:
            errors.append("extractor.api_key is required")

        if self.store.timeout_seconds <= 0:
            errors.append("store.timeout_seconds must be positive")
        if self.extractor.timeout_seconds <= 0:
            errors.append("extractor.timeout_seconds must be positive")

        if not self.pipeline.fallback_institutions:
            errors.append("pipeline.fallback_institutions must not be empty")

        return errors


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEDGERFLOW_STORE_URL
    - LEDGERFLOW_STORE_KEY
    - LEDGERFLOW_GEMINI_API_KEY
    - LEDGERFLOW_GEMINI_MODEL
    - LEDGERFLOW_DEFAULT_USER_ID
    - LEDGERFLOW_CACHE_DB
    - LEDGERFLOW_TIMEZONE
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Store config
    store_data = data.get("store", {})
    store = StoreConfig(
        base_url=os.environ.get(
            "LEDGERFLOW_STORE_URL", store_data.get("base_url", "http://localhost:54321")
        ),
        service_key=os.environ.get("LEDGERFLOW_STORE_KEY", store_data.get("service_key", "")),
        timeout_seconds=int(store_data.get("timeout_seconds", 30)),
        max_retries=int(store_data.get("max_retries", 2)),
    )

    # Extractor config
    extractor_data = data.get("extractor", {})
    extractor = ExtractorConfig(
        api_key=os.environ.get("LEDGERFLOW_GEMINI_API_KEY", extractor_data.get("api_key", "")),
        model=os.environ.get(
            "LEDGERFLOW_GEMINI_MODEL", extractor_data.get("model", "gemini-2.5-flash")
        ),
        base_url=extractor_data.get(
            "base_url", "https://generativelanguage.googleapis.com/v1beta"
        ),
        timeout_seconds=int(extractor_data.get("timeout_seconds", 30)),
        cache_ttl_days=int(extractor_data.get("cache_ttl_days", 7)),
    )

    # Cache config
    cache_data = data.get("cache", {})
    cache = CacheConfig(
        db_path=Path(
            os.environ.get("LEDGERFLOW_CACHE_DB", cache_data.get("db_path", "data/cache.db"))
        ),
        balance_ttl_seconds=int(cache_data.get("balance_ttl_seconds", 300)),
    )

    # Pipeline config
    pipeline_data = data.get("pipeline", {})
    pipeline = PipelineConfig(
        default_user_id=os.environ.get(
            "LEDGERFLOW_DEFAULT_USER_ID", pipeline_data.get("default_user_id")
        ),
        default_source=pipeline_data.get("default_source", "api"),
        timezone=os.environ.get(
            "LEDGERFLOW_TIMEZONE", pipeline_data.get("timezone", "America/Bogota")
        ),
        fallback_institutions=list(
            pipeline_data.get("fallback_institutions", ["cash", "bancolombia"])
        ),
        missing_category_slug=pipeline_data.get("missing_category_slug", "missing"),
        transfer_category_slug=pipeline_data.get("transfer_category_slug", "transfer"),
    )

    return Config(
        store=store,
        extractor=extractor,
        cache=cache,
        pipeline=pipeline,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# ledgerflow configuration
#
# Secrets can be supplied through environment variables instead:
# LEDGERFLOW_STORE_KEY, LEDGERFLOW_GEMINI_API_KEY

store:
  base_url: "http://localhost:54321"      # REST data store (PostgREST, /rest/v1)
  service_key: "YOUR_SERVICE_KEY"
  timeout_seconds: 30
  max_retries: 2                          # Reads only; writes are never retried

extractor:
  api_key: "YOUR_GEMINI_API_KEY"
  model: "gemini-2.5-flash"
  timeout_seconds: 30
  cache_ttl_days: 7                       # Cache parsed messages for this long

cache:
  db_path: "data/cache.db"
  balance_ttl_seconds: 300

pipeline:
  default_user_id: null
  default_source: "api"
  timezone: "America/Bogota"
  fallback_institutions:                  # Tried in order when no account matches
    - "cash"
    - "bancolombia"
  missing_category_slug: "missing"
  transfer_category_slug: "transfer"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
