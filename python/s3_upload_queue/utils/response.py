"""アップロード結果の整形"""
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit


def _cdn_url(url: str, cdn_url: str) -> str:
    """url のスキーム＋ホスト部分を cdn_url に置き換える"""
    parts = urlsplit(url)
    if not parts.netloc:
        return url
    return cdn_url.rstrip("/") + urlunsplit(("", "", parts.path, parts.query, parts.fragment))


def format_response(
    data: Optional[Mapping[str, Any]],
    enable_cdn: bool = False,
    cdn_url: str = "",
) -> Dict[str, Any]:
    """バックエンドの結果を {code, data: {name, url, suffix, size}} に整形"""
    data = data or {}
    res = data.get("res") or {}

    name = data.get("name") or ""
    url = data.get("url") or ""
    status = res.get("status", 500)
    size = res.get("size", 0)

    if enable_cdn and cdn_url and url:
        url = _cdn_url(url, cdn_url)

    return {
        "code": str(status),
        "data": {
            "name": name,
            "url": url,
            "suffix": f".{name.rsplit('.', 1)[-1]}" if name else "",
            "size": size,
        },
    }
