from typing import List, Optional

from pydantic_settings import BaseSettings

from pricesync.pricing.types import DEFAULT_STAY_BUCKETS, StayBucket


class Settings(BaseSettings):
    database_url: str = "sqlite:///./pricesync.db"

    # Outbound channel manager (Lodgify "save rates without availability")
    channel_api_url: str = "https://api.lodgify.com/v1/rates/savewithoutavailability"
    http_timeout_seconds: float = 30.0

    # Price-computation collaborator (store RPC: preview_pricing_calendar)
    pricing_rpc_url: str = ""
    pricing_rpc_key: str = ""
    pricing_horizon_days: int = 730  # two years ahead

    sync_batch_size: int = 2  # observed safe concurrent-request ceiling of the channel API
    sync_max_attempts: int = 3
    sync_retry_delays: List[float] = [5.0, 10.0, 20.0]
    stale_operation_minutes: int = 30

    stay_buckets: List[StayBucket] = DEFAULT_STAY_BUCKETS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
