import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmgt]?)(i?b?)\s*$", re.IGNORECASE)
_SIZE_SHIFT = {"": 0, "k": 10, "m": 20, "g": 30, "t": 40}

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_size(value: str) -> int:
    """Parse "150MB", "512KiB", "1G" or a plain byte count. Units are binary."""
    m = _SIZE_RE.match(value)
    if not m:
        raise ValueError(f"invalid size: {value!r}")
    number, unit, _ = m.groups()
    return int(number) << _SIZE_SHIFT[unit.lower()]


def parse_duration(value: str) -> Optional[timedelta]:
    """Parse plain seconds or durations such as "24h" and "1h30m". None if it is neither."""
    value = value.strip()
    try:
        return timedelta(seconds=float(value))
    except (ValueError, OverflowError):
        pass
    if not value or _DURATION_PART_RE.sub("", value):
        return None
    seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in _DURATION_PART_RE.findall(value))
    return timedelta(seconds=seconds)


class Settings(BaseSettings):
    app_env: str = Field("dev", alias="APP_ENV")
    app_host: str = Field("0.0.0.0", alias="APP_HOST")
    app_port: int = Field(8000, alias="APP_PORT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    mongodb_uri: str = Field(..., alias="MONGODB_URI")
    mongodb_db: str = Field("ephemera", alias="MONGODB_DB")

    blob_root: Path = Field(Path("files"), alias="BLOB_ROOT")
    public_root: Path = Field(Path("web"), alias="PUBLIC_ROOT")

    # Applies to the whole multipart body, so the usable file size is a little smaller.
    upload_limit: int = Field(150 << 20, alias="UPLOAD_LIMIT")
    # None (or zero) keeps entries forever.
    entry_lifetime: Optional[timedelta] = Field(timedelta(hours=24), alias="ENTRY_LIFETIME")

    @field_validator("upload_limit", mode="before")
    @classmethod
    def _size(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_size(v)
        return v

    @field_validator("entry_lifetime", mode="before")
    @classmethod
    def _lifetime(cls, v: Any) -> Any:
        if isinstance(v, str):
            if not v.strip():
                return None
            parsed = parse_duration(v)
            return v if parsed is None else parsed
        return v

    @field_validator("entry_lifetime")
    @classmethod
    def _forever(cls, v: Optional[timedelta]) -> Optional[timedelta]:
        if v is not None and v <= timedelta(0):
            return None
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
