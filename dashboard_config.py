import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


@dataclass
class Settings:
    """Runtime configuration read from the environment (.env supported)"""

    ckan_url: str = "http://localhost:5050"
    ckan_api_key: Optional[str] = None
    content_dir: str = "./content"
    upload_dir: str = "./public/uploads"
    host: str = "127.0.0.1"
    port: int = 3000
    log_file: Optional[str] = "ckan-dashboard.log"
    log_level: str = "INFO"
    max_upload_mb: int = 100

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ckan_url=os.getenv("CKAN_URL", cls.ckan_url).rstrip('/'),
            ckan_api_key=os.getenv("CKAN_API_KEY") or None,
            content_dir=os.getenv("CONTENT_DIR", cls.content_dir),
            upload_dir=os.getenv("UPLOAD_DIR", cls.upload_dir),
            host=os.getenv("DASHBOARD_HOST", cls.host),
            port=int(os.getenv("DASHBOARD_PORT", str(cls.port))),
            log_file=os.getenv("LOG_FILE", cls.log_file) or None,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", str(cls.max_upload_mb))),
        )

    @property
    def stories_dir(self) -> str:
        return os.path.join(self.content_dir, "stories")


def configure_logging(settings: Settings) -> None:
    # Empty LOG_FILE logs to stderr
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        filename=settings.log_file,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
