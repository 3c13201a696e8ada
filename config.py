import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    secret_key: str = "supersecretkey"
    algorithm: str = "HS256"
    jwt_expire_minutes: int = 30 * 24 * 60
    jwt_cookie_expire_days: int = 30
    environment: str = "development"

    geocoder_provider: str = "nominatim"
    geocoder_api_key: Optional[str] = None

    smtp_host: Optional[str] = None
    smtp_port: int = 2525
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from_name: str = "DevCamper"
    smtp_from_address: str = "noreply@devcamper.io"

    file_upload_path: str = "public/uploads"
    max_file_upload: int = 1000000

    log_level: str = "INFO"
    log_dir: Optional[str] = None
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name.upper())
            if raw is not None:
                values[name] = raw
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
