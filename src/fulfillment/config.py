"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FF_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Fulfillment Engine API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level applied at startup.")
    storage_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Where carts and assignments live. 'memory' keeps everything in-process.",
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Upper bound for a single document store call.",
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Upper bound for waiting on a per-cart, per-order or per-courier lock.",
    )

    # Tariff
    base_delivery_fee: int = Field(default=20, ge=0)
    free_delivery_radius_km: float = Field(default=5.0, ge=0.0)
    per_km_delivery_fee: int = Field(default=2, ge=0)
    allow_mixed_restaurant_carts: bool = Field(
        default=False,
        description="Keep the first restaurant pinned instead of rejecting items from another restaurant.",
    )
    cart_save_max_retries: int = Field(default=3, ge=0)

    # Dispatch
    dispatch_radius_km: float = Field(default=8.0, gt=0.0)
    distance_precision: int = Field(default=2, ge=0, description="Decimals kept on stored distances.")

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
