from __future__ import annotations

from typing import Optional

IPFS_SCHEME = "ipfs://"
DEFAULT_GATEWAY = "https://ipfs.io"


def is_ipfs_uri(uri: Optional[str]) -> bool:
    return bool(uri) and uri.startswith(IPFS_SCHEME)


def resolve_ipfs(uri: Optional[str], gateway: str = DEFAULT_GATEWAY) -> str:
    """Rewrite an ``ipfs://`` URI to an HTTP gateway URL; return anything else unchanged."""
    if not is_ipfs_uri(uri):
        return uri or ""
    content_path = uri[len(IPFS_SCHEME) :]
    if content_path.startswith("ipfs/"):
        content_path = content_path[len("ipfs/") :]
    return f"{gateway.rstrip('/')}/ipfs/{content_path}"
