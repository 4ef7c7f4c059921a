from __future__ import annotations

import re
from typing import Any, Iterable, Optional
from urllib.parse import unquote


DEFAULT_BUCKETS = ("application-files",)

_OBJECT_URL_RE = re.compile(r"/storage/v1/object/(?:public|sign|authenticated)/[^/]+/(.*)$")


def usable_file_path(raw: Any) -> Optional[str]:
    """Stored file reference, or None when absent or an upload placeholder."""
    s = str(raw or "").strip() if not isinstance(raw, (dict, list)) else ""
    if not s:
        return None
    if "local-file-path" in s or s.startswith("local-"):
        return None
    return s


def normalize_storage_path(raw: Any, buckets: Iterable[str] = DEFAULT_BUCKETS) -> Optional[str]:
    """
    Reduce a stored file reference to a comparable object key.

    Accepts a bare key (`clearances/a.pdf`), a bucket-qualified key
    (`application-files/clearances/a.pdf`) or a full object URL, signed or public.
    """
    s = usable_file_path(raw)
    if s is None:
        return None

    s = s.split("#", 1)[0].split("?", 1)[0]
    names = [str(b).strip("/") for b in buckets or () if str(b or "").strip("/")]

    m = _OBJECT_URL_RE.search(s)
    if m:
        s = m.group(1)
    else:
        for name in names:
            marker = f"/{name}/"
            idx = s.find(marker)
            if idx >= 0:
                s = s[idx + len(marker) :]
                break

    s = s.lstrip("/")
    for name in names:
        if s.startswith(name + "/"):
            s = s[len(name) + 1 :]
            break

    s = unquote(s).strip()
    return s or None


def same_file(a: Any, b: Any, buckets: Iterable[str] = DEFAULT_BUCKETS) -> bool:
    na = normalize_storage_path(a, buckets)
    if na is None:
        return False
    return na == normalize_storage_path(b, buckets)
