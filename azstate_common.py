# azstate_common.py
import os
import re
import sys
import random
import time
from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc
RETRYABLE = {429, 500, 502, 503, 504}
MGMT_RESOURCE = "https://management.azure.com/.default"

_TIMESTAMPS = False


def set_timestamp_preference(enabled: bool) -> None:
    """Prefix every log line with an ISO-8601 UTC timestamp when enabled."""
    global _TIMESTAMPS
    _TIMESTAMPS = bool(enabled)


def _prefix() -> str:
    if _TIMESTAMPS:
        return f"{datetime.now(UTC).strftime('%Y-%m-%dT%H:%M:%SZ')} [AzState]"
    return "[AzState]"


def _log(msg: str):
    if os.getenv("AZSTATE_QUIET", "0") == "1":
        return
    print(f"{_prefix()} {msg}")


def warn(msg: str):
    print(f"{_prefix()}[warn] {msg}", file=sys.stderr)


def _retry_after(r) -> Optional[float]:
    """Seconds requested by Retry-After (seconds) or retry-after-ms, if any."""
    ms = r.headers.get("retry-after-ms")
    ra = r.headers.get("Retry-After")
    try:
        if ms:
            return float(ms) / 1000.0
        if ra:
            return float(ra)
    except ValueError:
        return None
    return None


def http_with_backoff(func, url, *, headers=None, params=None, json_body=None, data=None,
                      timeout: float = 60.0, max_retries: int = 5,
                      base_delay: float = 0.5, max_delay: float = 8.0, label: Optional[str] = None):
    """
    Call a requests.<method> `func`, retrying throttled (429) and server-side
    (5xx) answers and transport failures with exponential backoff.

    Returns the final Response, or None when every attempt failed before a
    response arrived. `label` names the scope being read in retry logs.
    """
    what = label or url
    for attempt in range(max_retries + 1):
        try:
            r = func(url, headers=headers, params=params, json=json_body, data=data, timeout=timeout)
        except Exception as ex:
            warn(f"{what}: {ex.__class__.__name__}: {ex}")
            r = None

        if r is not None and r.status_code not in RETRYABLE:
            return r
        if attempt == max_retries:
            return r

        delay = _retry_after(r) if r is not None else None
        if delay is None:
            delay = min(max_delay, base_delay * (2 ** attempt)) + random.uniform(0, 0.25)
        code = r.status_code if r is not None else "no response"
        _log(f"[retry] {what}: {code} -> sleep {delay:.2f}s (attempt {attempt + 1}/{max_retries})")
        time.sleep(delay)
    return None


def get_token(cred) -> str:
    """Obtain an ARM audience bearer token using the provided Azure Identity credential."""
    return cred.get_token(MGMT_RESOURCE).token


_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_directory_name(name: Optional[str]) -> str:
    """
    Produce a directory name that is valid on Windows, macOS and Linux.
    Reserved characters become '-', surrounding whitespace and trailing dots
    are dropped. An empty result falls back to '_'.
    """
    n = _UNSAFE.sub("-", str(name or ""))
    n = n.strip().rstrip(".").strip()
    return n or "_"
