from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from requests.models import PreparedRequest
from requests.structures import CaseInsensitiveDict


@dataclass
class RequestDescriptor:
    """
    One outbound call as seen by the interceptor chain.

    ``url`` is either a path relative to the client's base endpoint or an
    absolute URL (object-store endpoints, attachment links). ``body`` is
    JSON-serializable data for API calls or raw ``bytes`` for uploads.
    """

    method: str
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    base_url: str = ""

    def __post_init__(self):
        self.method = self.method.upper()
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def is_absolute(self):
        return self.url.startswith(("http://", "https://"))

    def target_url(self):
        """Base endpoint joined with the path, without query parameters."""
        if self.is_absolute or not self.base_url:
            return self.url
        return f"{self.base_url.rstrip('/')}/{self.url.lstrip('/')}"

    def absolute_url(self):
        """Target URL with the query parameters serialized onto it."""
        prepared = PreparedRequest()
        prepared.prepare_url(self.target_url(), self.params)
        return prepared.url

    @property
    def content_type(self):
        return self.headers.get("content-type") or ""

    def __repr__(self):
        return f"<RequestDescriptor {self.method} {self.url}>"


@dataclass
class ResponseEnvelope:
    """
    One inbound result. Response steps mutate ``body`` in place.
    """

    status_code: int
    reason: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Any = None
    request: Optional[RequestDescriptor] = None

    def __post_init__(self):
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    @property
    def content_type(self):
        return self.headers.get("content-type") or ""

    def __repr__(self):
        return f"<ResponseEnvelope {self.status_code} {self.reason}>"
