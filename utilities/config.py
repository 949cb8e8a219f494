"""
Configuration management using environment variables.
Handles all offline worker settings with proper validation and defaults.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urljoin

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class WorkerConfig(BaseSettings):
    """
    Configuration class for the offline caching worker.
    Uses pydantic BaseSettings for environment variable management.
    """

    # Application
    app_name: str = Field(default="FindBook")
    origin: str = Field(default="http://localhost:4200")

    # Cache partitions
    cache_prefix: str = Field(default="findbook")
    cache_version: str = Field(default="1.2.0")
    static_assets: List[str] = Field(default_factory=lambda: [
        "/",
        "/index.html",
        "/styles.css",
        "/favicon.ico",
        "/assets/images/book-placeholder.png",
    ])
    api_cache_patterns: List[str] = Field(default_factory=lambda: [
        r"^https://www\.googleapis\.com/books/v1/volumes",
    ])
    image_cache_patterns: List[str] = Field(default_factory=lambda: [
        r"^https://books\.google\.com/books/content",
        r"\.(?:png|jpg|jpeg|svg|gif|webp)$",
    ])
    placeholder_image: str = Field(default="/assets/images/book-placeholder.png")

    # Freshness thresholds
    cache_max_age_seconds: int = Field(default=24 * 60 * 60)
    api_cache_max_age_seconds: int = Field(default=15 * 60)
    image_cache_max_age_seconds: int = Field(default=7 * 24 * 60 * 60)

    # Network
    request_timeout: int = Field(default=30)

    # Periodic jobs
    metrics_report_interval_seconds: int = Field(default=60)
    expired_purge_interval_seconds: int = Field(default=60 * 60)

    # Background sync queue storage
    sync_store: str = Field(default="memory")
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="findbook")
    mongodb_collection: str = Field(default="sync_queue")
    sync_endpoints: Dict[str, str] = Field(default_factory=lambda: {
        "book": "/api/books/actions",
        "favorite": "/api/favorites",
        "preference": "/api/preferences",
    })

    # Notifications
    notification_tag: str = Field(default="findbook-notification")
    notification_icon: str = Field(default="/assets/icons/icon-192x192.png")
    notification_badge: str = Field(default="/assets/icons/badge-72x72.png")

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)
    debug: bool = Field(default=False)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Ensure timeout is reasonable."""
        if v < 5 or v > 300:
            raise ValueError('request_timeout must be between 5 and 300 seconds')
        return v

    @field_validator(
        'cache_max_age_seconds',
        'api_cache_max_age_seconds',
        'image_cache_max_age_seconds',
        'metrics_report_interval_seconds',
        'expired_purge_interval_seconds',
    )
    @classmethod
    def validate_positive_seconds(cls, v):
        """Ensure durations are positive."""
        if v <= 0:
            raise ValueError('durations must be positive')
        return v

    @field_validator('api_cache_patterns', 'image_cache_patterns')
    @classmethod
    def validate_patterns(cls, v):
        """Ensure every cache pattern compiles."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f'invalid pattern {pattern!r}: {e}')
        return v

    @field_validator('sync_store')
    @classmethod
    def validate_sync_store(cls, v):
        """Ensure the sync queue store is known."""
        valid_stores = ['memory', 'mongodb']
        if v.lower() not in valid_stores:
            raise ValueError(f'sync_store must be one of: {valid_stores}')
        return v.lower()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def partition_name(self, purpose: str) -> str:
        """Versioned name of a cache partition, e.g. ``findbook-api-v1.2.0``."""
        return f"{self.cache_prefix}-{purpose}-v{self.cache_version}"

    @property
    def static_cache_name(self) -> str:
        return self.partition_name("static")

    @property
    def dynamic_cache_name(self) -> str:
        return self.partition_name("dynamic")

    @property
    def api_cache_name(self) -> str:
        return self.partition_name("api")

    @property
    def image_cache_name(self) -> str:
        return self.partition_name("images")

    @property
    def preload_cache_name(self) -> str:
        return f"{self.cache_prefix}-preload-v1"

    def partition_names(self) -> List[str]:
        """The four partition names the current version expects."""
        return [
            self.static_cache_name,
            self.dynamic_cache_name,
            self.api_cache_name,
            self.image_cache_name,
        ]

    def resolve_url(self, path: str) -> str:
        """Resolve a site-relative path against the application origin."""
        return urljoin(self.origin.rstrip("/") + "/", path)

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None


# Global configuration instance
config = WorkerConfig()
