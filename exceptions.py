"""Error types raised inside the proxy and converted to JSON responses at the route boundary"""
from typing import Optional


class ProxyError(Exception):
    """Base class for every error the proxy knows how to report"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestParseError(ProxyError):
    """Request body is not a JSON object"""


class RequestCancelled(ProxyError):
    """Retry sequence was aborted by its cancellation token"""


class UpstreamError(ProxyError):
    """Upstream call failed; status_code is None for transport failures"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamRateLimited(UpstreamError):
    def __init__(self, message: str = "Rate limit reached (429)."):
        super().__init__(message, status_code=429)


class EmptyUpstreamContent(UpstreamError):
    """Upstream answered 2xx but carried no usable artifact"""
