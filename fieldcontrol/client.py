import asyncio
import logging
from functools import partial
from typing import Any, Dict, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout
from requests.structures import CaseInsensitiveDict

from fieldcontrol.interceptors import InterceptorChain, default_chain
from models import RequestDescriptor, ResponseEnvelope

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://amonamarth.fieldcontrol.com.br"


class TransportError(Exception):
    """
    A request never produced an HTTP response (DNS, refused, timeout, garbled reply).
    """

    def __init__(self, method, url, cause):
        self.method = method
        self.url = url
        self.cause = cause
        super().__init__(f"{method} {url} failed: {cause}")

    @property
    def kind(self):
        if isinstance(self.cause, Timeout):
            return "timeout"
        if isinstance(self.cause, ConnectionError):
            return "connection"
        return "transport"

    def to_dict(self):
        return {
            "name": type(self).__name__,
            "kind": self.kind,
            "message": str(self.cause),
            "method": self.method,
            "url": self.url,
            "cause": type(self.cause).__name__,
        }


class ApiError(Exception):
    """
    The API answered with a non-success status code.
    """

    def __init__(self, response: ResponseEnvelope, action=None):
        self.response = response
        self.action = action
        self.status_code = response.status_code
        message = f"API request failed with status {response.status_code} {response.reason}"
        if action:
            message = f"{action}: {message}"
        if response.body:
            message += f": {response.body}"
        super().__init__(message)

    def to_dict(self):
        request = self.response.request
        return {
            "name": type(self).__name__,
            "action": self.action,
            "status": self.status_code,
            "reason": self.response.reason,
            "url": request.absolute_url() if request else None,
            "body": self.response.body,
        }


def ensure_success(response: ResponseEnvelope, action=None) -> ResponseEnvelope:
    """Raise ApiError unless the response carries a 2xx status."""
    if not response.ok:
        raise ApiError(response, action)
    return response


class ApiClient:
    """
    Client for the Field Control REST API.

    Every call runs through the interceptor chain, and every HTTP status code
    comes back as a ResponseEnvelope; deciding what counts as failure is left
    to the caller (see ``ensure_success``).
    """

    def __init__(
        self,
        base_url=DEFAULT_BASE_URL,
        api_key=None,
        api_key_header="x-api-key",
        timeout=30,
        interceptors: Optional[InterceptorChain] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url (str): Base endpoint every relative path is resolved against
            api_key (str): Static API key sent on every call
            api_key_header (str): Header carrying the API key
            timeout (float): Connection/read timeout in seconds
            interceptors (InterceptorChain): Steps applied around each call,
                the default logging/decoding chain when omitted
            session (requests.Session): Session to send through, mainly for tests
        """
        self.base_url = base_url
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.timeout = timeout
        self.interceptors = interceptors if interceptors is not None else default_chain()
        self.session = session or requests.Session()
        self.headers = CaseInsensitiveDict({
            "content-type": "application/json",
            "accept": "application/json",
            api_key_header: api_key,
        })

        self._validate_config()

    def _validate_config(self):
        missing = []
        if not self.base_url:
            missing.append("base_url")
        if not self.api_key:
            missing.append("api_key")

        if missing:
            raise ValueError(f"Missing required API client settings: {', '.join(missing)}. "
                             f"Please check your environment variables.")

    def build_request(self, method, url, params=None, body=None, headers=None):
        merged = CaseInsensitiveDict(self.headers)
        if headers:
            merged.update(headers)
        return RequestDescriptor(
            method=method,
            url=url,
            headers=merged,
            params=dict(params or {}),
            body=body,
            base_url=self.base_url,
        )

    def resolve_url(self, request: RequestDescriptor):
        if not request.base_url:
            request.base_url = self.base_url
        return request.absolute_url()

    async def _run_in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _perform(self, request: RequestDescriptor) -> requests.Response:
        # Only scalar headers go over the wire; structured values are local annotations
        wire_headers = {
            key: str(value)
            for key, value in request.headers.items()
            if isinstance(value, (str, int, float)) and not isinstance(value, bool)
        }
        kwargs: Dict[str, Any] = {
            "params": request.params or None,
            "headers": wire_headers,
            "timeout": self.timeout,
        }
        if isinstance(request.body, (bytes, bytearray)):
            kwargs["data"] = bytes(request.body)
        elif request.body is not None:
            kwargs["json"] = request.body

        url = request.target_url()
        logger.debug(f"Executing {request.method} request to {url}")
        try:
            return self.session.request(request.method, url, **kwargs)
        except RequestException as e:
            logger.error(f"Error executing {request.method} {url}: {str(e)}")
            raise TransportError(request.method, request.absolute_url(), e) from e

    def _to_envelope(self, raw: requests.Response, request: RequestDescriptor) -> ResponseEnvelope:
        headers = CaseInsensitiveDict(raw.headers)
        content_type = (headers.get("content-type") or "").lower()

        if request.method == "HEAD":
            body = ""
        elif "application/json" in content_type and raw.content:
            try:
                body = raw.json()
            except ValueError:
                logger.warning(f"Invalid JSON response from {request.target_url()}")
                body = raw.text
        else:
            body = raw.text

        return ResponseEnvelope(
            status_code=raw.status_code,
            reason=raw.reason or "",
            headers=headers,
            body=body,
            request=request,
        )

    async def send(self, request: RequestDescriptor) -> ResponseEnvelope:
        """
        Send one request through the interceptor chain.

        Returns:
            ResponseEnvelope: The transformed response, whatever its status

        Raises:
            TransportError: If no HTTP response was received
        """
        logger.debug(f"Sending {request.method} {self.resolve_url(request)}")
        request = self.interceptors.apply_request(request)
        raw = await self._run_in_executor(self._perform, request)
        response = self._to_envelope(raw, request)
        logger.debug(f"{request.method} {request.target_url()} -> {response.status_code}")
        return self.interceptors.apply_response(response)

    async def request(self, method, url, params=None, json=None, data=None, headers=None):
        body = data if data is not None else json
        return await self.send(self.build_request(method, url, params=params, body=body, headers=headers))

    async def get(self, url, params=None, headers=None):
        return await self.request("GET", url, params=params, headers=headers)

    async def post(self, url, json=None, data=None, params=None, headers=None):
        return await self.request("POST", url, params=params, json=json, data=data, headers=headers)

    async def head(self, url, params=None, headers=None):
        return await self.request("HEAD", url, params=params, headers=headers)

    def close(self):
        self.session.close()

    def __repr__(self):
        return f"<ApiClient {self.base_url}>"
