from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


# Pydantic settings for configuration
class Settings(BaseSettings):
    app_name: str = "PPZ Logalyzer Backend"
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    host: str = "0.0.0.0"
    port: int = 8080

    # Default message catalog (Paparazzi messages.xml) used when a header embeds none
    messages_xml: Optional[Path] = None
    # Message class read from catalogs that contain several <msg_class> blocks
    message_class: str = "telemetry"

    parsed_cache_ttl_seconds: int = 3600  # 0 disables the parsed-result cache
    task_max_age_hours: int = 24
    progress_interval: int = 1000  # lines between progress updates
    max_line_errors: int = 100  # line diagnostics kept per file
    max_retained_results: int = 100  # processed results kept for the telemetry routes

    class Config:
        env_file = ".env"
        env_prefix = "PPZ_"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
