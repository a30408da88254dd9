import logging
import math
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Optional

# Configure logger for config module warnings
logger = logging.getLogger(__name__)

ENV_PREFIX = "TUBELY_"


class ConfigError(Exception):
    """Raised when a required setting is missing or unusable."""

    pass


def get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """Get an integer from environment variable with error handling and validation.

    Args:
        name: Environment variable name
        default: Default value if env var is missing or invalid
        min_val: Optional minimum value (inclusive)
        max_val: Optional maximum value (inclusive)

    Returns:
        Parsed integer value, or default if parsing fails or value is out of range
    """
    value = os.getenv(name)
    if value is None:
        return default

    try:
        result = int(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', using default {default}")
        return default

    if min_val is not None and result < min_val:
        logger.warning(f"{name}={result} is below minimum {min_val}, using default {default}")
        return default
    if max_val is not None and result > max_val:
        logger.warning(f"{name}={result} is above maximum {max_val}, using default {default}")
        return default

    return result


def get_float_env(
    name: str,
    default: float,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> float:
    """Get a float from environment variable with error handling and validation.

    Special values (inf, nan) are rejected the same way as unparseable input.
    """
    value = os.getenv(name)
    if value is None:
        return default

    try:
        result = float(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', using default {default}")
        return default

    if math.isinf(result) or math.isnan(result):
        logger.warning(f"Invalid {name}='{value}' (special float), using default {default}")
        return default

    if min_val is not None and result < min_val:
        logger.warning(f"{name}={result} is below minimum {min_val}, using default {default}")
        return default
    if max_val is not None and result > max_val:
        logger.warning(f"{name}={result} is above maximum {max_val}, using default {default}")
        return default

    return result


def get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean flag; anything but false/0/no counts as enabled."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no", "off", "")


def get_list_env(name: str) -> List[str]:
    """Split a comma-separated env var into a list, dropping blanks."""
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def require_env(name: str) -> str:
    """Return a required env var or raise ConfigError if it is unset or blank."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"Environment variable {name} is not set")
    return value


# Size ceilings
DEFAULT_MAX_UPLOAD_SIZE = 1 << 30  # 1 GiB
DEFAULT_MAX_THUMBNAIL_SIZE = 10 << 20  # 10 MiB
DEFAULT_UPLOAD_CHUNK_SIZE = 1 << 20  # 1 MiB

# Content types accepted by the upload endpoints (always sniffed, never trusted)
VIDEO_CONTENT_TYPE = "video/mp4"
THUMBNAIL_CONTENT_TYPES = frozenset(["image/jpeg", "image/png"])


@dataclass(frozen=True)
class Settings:
    """Process configuration, built once at startup and passed to every component."""

    jwt_secret: str
    s3_bucket: str
    s3_region: str
    database_url: str = "sqlite:///./tubely.db"
    platform: str = "prod"
    filepath_root: Path = Path("./app")
    assets_root: Path = Path("./assets")
    s3_endpoint_url: Optional[str] = None
    port: int = 8091
    public_url: str = "http://localhost:8091"
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    max_thumbnail_size: int = DEFAULT_MAX_THUMBNAIL_SIZE
    upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE
    store_put_timeout: float = 30.0
    signed_url_ttl: int = 3600
    access_token_ttl: int = 3600
    refresh_token_days: int = 60
    temp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    ffprobe_path: str = "ffprobe"
    ffmpeg_path: str = "ffmpeg"
    rate_limit_enabled: bool = True
    trusted_proxies: FrozenSet[str] = frozenset()
    cors_origins: tuple = ()

    @property
    def is_dev(self) -> bool:
        return self.platform == "dev"


def load_settings() -> Settings:
    """
    Build Settings from TUBELY_* environment variables.

    Raises:
        ConfigError: If TUBELY_JWT_SECRET, TUBELY_S3_BUCKET or TUBELY_S3_REGION is missing
    """
    port = get_int_env(f"{ENV_PREFIX}PORT", 8091, min_val=1, max_val=65535)
    temp_dir = os.getenv(f"{ENV_PREFIX}TEMP_DIR")

    settings = Settings(
        jwt_secret=require_env(f"{ENV_PREFIX}JWT_SECRET"),
        s3_bucket=require_env(f"{ENV_PREFIX}S3_BUCKET"),
        s3_region=require_env(f"{ENV_PREFIX}S3_REGION"),
        database_url=os.getenv(f"{ENV_PREFIX}DATABASE_URL", "sqlite:///./tubely.db"),
        platform=os.getenv(f"{ENV_PREFIX}PLATFORM", "prod").strip().lower(),
        filepath_root=Path(os.getenv(f"{ENV_PREFIX}FILEPATH_ROOT", "./app")),
        assets_root=Path(os.getenv(f"{ENV_PREFIX}ASSETS_ROOT", "./assets")),
        s3_endpoint_url=os.getenv(f"{ENV_PREFIX}S3_ENDPOINT_URL") or None,
        port=port,
        public_url=os.getenv(f"{ENV_PREFIX}PUBLIC_URL", f"http://localhost:{port}").rstrip("/"),
        max_upload_size=get_int_env(f"{ENV_PREFIX}MAX_UPLOAD_SIZE", DEFAULT_MAX_UPLOAD_SIZE, min_val=1),
        max_thumbnail_size=get_int_env(f"{ENV_PREFIX}MAX_THUMBNAIL_SIZE", DEFAULT_MAX_THUMBNAIL_SIZE, min_val=1),
        upload_chunk_size=get_int_env(f"{ENV_PREFIX}UPLOAD_CHUNK_SIZE", DEFAULT_UPLOAD_CHUNK_SIZE, min_val=1024),
        store_put_timeout=get_float_env(f"{ENV_PREFIX}STORE_PUT_TIMEOUT", 30.0, min_val=1.0),
        signed_url_ttl=get_int_env(f"{ENV_PREFIX}SIGNED_URL_TTL", 3600, min_val=1, max_val=7 * 24 * 3600),
        access_token_ttl=get_int_env(f"{ENV_PREFIX}ACCESS_TOKEN_TTL", 3600, min_val=60),
        refresh_token_days=get_int_env(f"{ENV_PREFIX}REFRESH_TOKEN_DAYS", 60, min_val=1),
        temp_dir=Path(temp_dir) if temp_dir else Path(tempfile.gettempdir()),
        ffprobe_path=os.getenv(f"{ENV_PREFIX}FFPROBE_PATH", "ffprobe"),
        ffmpeg_path=os.getenv(f"{ENV_PREFIX}FFMPEG_PATH", "ffmpeg"),
        rate_limit_enabled=get_bool_env(f"{ENV_PREFIX}RATE_LIMIT_ENABLED", True),
        trusted_proxies=frozenset(get_list_env(f"{ENV_PREFIX}TRUSTED_PROXIES")),
        cors_origins=tuple(get_list_env(f"{ENV_PREFIX}CORS_ORIGINS")),
    )

    if len(settings.jwt_secret) < 16:
        logger.warning(f"{ENV_PREFIX}JWT_SECRET is shorter than 16 characters; use a longer secret in production")

    return settings
