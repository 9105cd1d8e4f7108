from typing import Dict, FrozenSet, Iterable, Optional

DOWNLOAD_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET",
}


class CorsPolicy:
    """Origin policy for uploads.

    With ``allow_all`` every request origin is reflected back. Otherwise only
    origins in ``allowlist`` are reflected and other origins get no
    ``Access-Control-Allow-Origin`` header, which makes browsers drop the
    response. Downloads are always open to any origin.
    """

    def __init__(self, allow_all: bool = False, allowlist: Iterable[str] = ()):
        self.allow_all = allow_all
        self.allowlist: FrozenSet[str] = frozenset(o.rstrip("/") for o in allowlist)

    @classmethod
    def from_settings(cls, settings) -> "CorsPolicy":
        return cls(allow_all=settings.cors_allow_all, allowlist=settings.cors_allowed_origins)

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return self.allow_all or origin.rstrip("/") in self.allowlist

    def upload_headers(self, origin: Optional[str]) -> Dict[str, str]:
        headers = {
            "Access-Control-Allow-Methods": "POST",
            "Access-Control-Allow-Headers": "Content-Type",
            "Vary": "Origin",
        }
        if self.is_allowed(origin):
            headers["Access-Control-Allow-Origin"] = origin
        return headers

    def download_headers(self) -> Dict[str, str]:
        return dict(DOWNLOAD_CORS_HEADERS)
