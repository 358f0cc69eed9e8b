# ephemera/utils.py
from __future__ import annotations
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

_DISP_SAFE_RE = re.compile(r'[\r\n"\\]')  # strip controls, quotes and escapes

def sanitize_filename(name: str) -> str:
    if not name:
        return "file"
    name = _DISP_SAFE_RE.sub("", name).strip()
    return name or "file"

def _ascii_fallback(name: str) -> str:
    return "".join(c if 0x20 <= ord(c) < 0x7F else "_" for c in name)

def _percent_encode(b: bytes) -> str:
    out = []
    for c in b:
        if (
            0x30 <= c <= 0x39 or  # 0-9
            0x41 <= c <= 0x5A or  # A-Z
            0x61 <= c <= 0x7A or  # a-z
            c in (0x2D, 0x2E, 0x5F, 0x7E)  # - . _ ~
        ):
            out.append(chr(c))
        else:
            out.append(f"%{c:02X}")
    return "".join(out)

def build_content_disposition(filename: str) -> str:
    """
    Filename only, no inline/attachment type: browsers keep their default handling
    and still get the original name. Quoted ASCII form first, RFC 5987 form second.
    """
    safe = sanitize_filename(filename)
    filename_star = "UTF-8''" + _percent_encode(filename.encode("utf-8"))
    return f'filename="{_ascii_fallback(safe)}"; filename*={filename_star}'

def file_ext(name: str) -> str:
    """Everything from the last "." of the final path element, or ""."""
    base = name.rsplit("/", 1)[-1]
    i = base.rfind(".")
    return base[i:] if i >= 0 else ""

def http_date(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")

def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
