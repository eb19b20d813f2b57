import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./syshealth.db"
    ingest_secret: str = "change-me"
    # Bearer token for the read endpoints; None leaves them open.
    api_token: Optional[str] = None
    max_body_bytes: int = 256 * 1024
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def database_path(self) -> str:
        return self.database_url.replace("sqlite:///", "")


def load_settings() -> Settings:
    load_dotenv()
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        ingest_secret=os.getenv("INGEST_SECRET", defaults.ingest_secret),
        api_token=os.getenv("API_TOKEN") or None,
        max_body_bytes=int(os.getenv("MAX_BODY_BYTES", defaults.max_body_bytes)),
        host=os.getenv("HOST", defaults.host),
        port=int(os.getenv("PORT", defaults.port)),
    )
