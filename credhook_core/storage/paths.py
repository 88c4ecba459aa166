from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse


def join_uri(base_uri: str, *parts: str) -> str:
    """Append segments to a local path, a ``file://`` URI or a bucket URI."""
    segments = [part.strip("/") for part in parts if part and part.strip("/")]
    parsed = urlparse(base_uri)
    if parsed.scheme == "file":
        return str(Path(parsed.path).joinpath(*segments))
    if parsed.scheme and (parsed.netloc or base_uri.startswith(f"{parsed.scheme}://")):
        return "/".join([base_uri.rstrip("/"), *segments])
    return str(Path(base_uri).joinpath(*segments))


def parent_path(path: str) -> str:
    return path.rpartition("/")[0]
