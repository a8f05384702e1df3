"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTES_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Route Planner API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level applied at startup.")

    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)
    osrm_timeout_seconds: float = Field(default=30.0, gt=0.0)

    routing_provider: Literal["osrm", "haversine"] = Field(
        default="haversine",
        description="Provider used for travel distance/duration when the API builds an optimizer.",
    )
    provider_timeout_seconds: float = Field(
        default=45.0,
        gt=0.0,
        description="Upper bound for a single routing provider call made by the optimizer.",
    )
    average_speed_kmh: float = Field(
        default=40.0,
        gt=0.0,
        description="Average driving speed used by the haversine provider.",
    )
    road_distance_factor: float = Field(
        default=1.3,
        ge=1.0,
        description="Multiplier turning great-circle distance into an approximate road distance.",
    )

    default_stop_duration_minutes: int = Field(default=30, ge=0)
    working_hours_start: str = Field(default="08:00", pattern=r"^\d{2}:\d{2}$")
    fuel_consumption_l_per_100km: float = Field(default=8.5, ge=0.0)
    fuel_price_per_liter: float = Field(default=1.5, ge=0.0)
    labor_rate_per_hour: float = Field(default=25.0, ge=0.0)

    tie_epsilon: float = Field(
        default=1e-6,
        ge=0.0,
        description="Two candidate legs whose cost differs by less than this are considered tied.",
    )
    balanced_priority_window: float = Field(
        default=0.1,
        ge=0.0,
        description="Relative cost window inside which the balanced strategy prefers higher priority stops.",
    )
    balanced_distance_weight: float = Field(default=0.5, ge=0.0)
    balanced_time_weight: float = Field(default=0.5, ge=0.0)
    max_two_opt_passes: int = Field(default=50, ge=0)
    solver_backend: Literal["heuristic", "ortools"] = Field(default="heuristic")
    solver_time_limit_seconds: int = Field(default=5, ge=1)

    recurrence_horizon_days: int = Field(default=7, ge=0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
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
