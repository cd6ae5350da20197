"""
Request/response interceptors applied around every API client call.

Each interceptor is a plain function that receives a message and returns the
(possibly modified) message handed to the next step.
"""
import json
import logging
import re
from enum import Enum
from functools import reduce
from typing import Callable, Iterable, NamedTuple, Optional
from xml.etree.ElementTree import Element

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, fromstring

from models import RequestDescriptor, ResponseEnvelope

logger = logging.getLogger(__name__)

# Diagnostic blocks get their own logger so they can be routed or silenced apart
http_logger = logging.getLogger("fieldcontrol.http")

XML_CONTENT_TYPE = "application/xml"
JSON_CONTENT_TYPE = "application/json"

# Header names containing any of these are logged with a masked value
REDACTED_HEADER_MARKERS = ("api-key", "apikey", "authorization", "token")

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>\s*", re.IGNORECASE)
_SCALAR_TYPES = (str, int, float, bool)


class Stage(Enum):
    REQUEST = "request"
    RESPONSE = "response"


class Interceptor(NamedTuple):
    name: str
    stage: Stage
    func: Callable


class InterceptorChain:
    """
    Ordered request and response steps, fixed at construction time.

    Steps run left to right, so the chain behaves like
    ``stepN(...step1(message))``.
    """

    def __init__(self, interceptors: Iterable[Interceptor] = ()):
        self._interceptors = tuple(interceptors)
        for interceptor in self._interceptors:
            if not isinstance(interceptor.stage, Stage):
                raise ValueError(f"Interceptor '{interceptor.name}' has no valid stage")

    @property
    def interceptors(self):
        return self._interceptors

    @property
    def request_steps(self):
        return tuple(i for i in self._interceptors if i.stage is Stage.REQUEST)

    @property
    def response_steps(self):
        return tuple(i for i in self._interceptors if i.stage is Stage.RESPONSE)

    def names(self, stage: Stage):
        return [i.name for i in self._interceptors if i.stage is stage]

    def with_interceptor(self, interceptor: Interceptor, before: Optional[str] = None):
        """
        Return a new chain with ``interceptor`` added.

        Args:
            interceptor (Interceptor): Step to add
            before (str): Name of a step of the same stage to insert in front of.
                Appended at the end when omitted.

        Returns:
            InterceptorChain: The extended chain; this chain is left untouched
        """
        interceptors = list(self._interceptors)
        if before is None:
            interceptors.append(interceptor)
            return InterceptorChain(interceptors)

        for index, existing in enumerate(interceptors):
            if existing.name == before and existing.stage is interceptor.stage:
                interceptors.insert(index, interceptor)
                return InterceptorChain(interceptors)
        raise ValueError(f"No {interceptor.stage.value} interceptor named '{before}'")

    def apply_request(self, request: RequestDescriptor) -> RequestDescriptor:
        return reduce(_run_step, self.request_steps, request)

    def apply_response(self, response: ResponseEnvelope) -> ResponseEnvelope:
        return reduce(_run_step, self.response_steps, response)

    def __repr__(self):
        return (
            f"<InterceptorChain request={self.names(Stage.REQUEST)} "
            f"response={self.names(Stage.RESPONSE)}>"
        )


def _run_step(message, interceptor):
    result = interceptor.func(message)
    if result is None:
        raise TypeError(f"Interceptor '{interceptor.name}' returned None instead of a message")
    return result


def has_content_type(message, content_type):
    return content_type in (message.content_type or "").lower()


def is_secret_header(name):
    name = name.lower()
    return any(marker in name for marker in REDACTED_HEADER_MARKERS)


def _to_json(data):
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


# --- XML decoding ---

def _local_name(tag):
    # "{namespace}Key" -> "Key"
    return tag.rpartition("}")[2]


def _element_to_data(element: Element):
    children = list(element)
    if not children:
        return (element.text or "").strip()

    data = {}
    for child in children:
        tag = _local_name(child.tag)
        value = _element_to_data(child)
        if tag in data:
            if not isinstance(data[tag], list):
                data[tag] = [data[tag]]
            data[tag].append(value)
        else:
            data[tag] = value
    return data


def parse_xml(text):
    """
    Parse an XML document into nested dicts keyed by tag name.

    Repeated sibling tags are collected into lists, leaf elements become their
    text and attributes are ignored. Tags are keyed by local name, without
    their namespace. Any ``<?xml ...?>`` declaration is dropped.
    """
    root = fromstring(_XML_DECLARATION.sub("", text, count=1))
    return {_local_name(root.tag): _element_to_data(root)}


def xml_body_decoder(response: ResponseEnvelope) -> ResponseEnvelope:
    if not has_content_type(response, XML_CONTENT_TYPE):
        return response
    if not isinstance(response.body, str) or not response.body.strip():
        return response

    try:
        response.body = parse_xml(response.body)
    except (ParseError, DefusedXmlException) as e:
        logger.warning(f"Could not decode XML body ({e}); keeping raw text")
    return response


# --- Diagnostic logging ---

def render_response(response: ResponseEnvelope):
    lines = ["### response", f"{response.status_code} {response.reason}"]
    if response.body:
        lines.append(_to_json(response.body))
    lines.append("### end response")
    lines.append("")
    return "\n".join(lines)


def render_request(request: RequestDescriptor):
    lines = ["### request", f"{request.method} {request.absolute_url()}"]

    for key, value in request.headers.items():
        # Structured values (auth objects and the like) stay out of the logs
        if not isinstance(value, _SCALAR_TYPES):
            continue
        if is_secret_header(key):
            value = "*" * len(str(value))
        lines.append(f"{key}: {value}")

    if has_content_type(request, JSON_CONTENT_TYPE) and request.body is not None:
        lines.append(_to_json(request.body))

    lines.append("### end request")
    lines.append("")
    return "\n".join(lines)


def response_logger(response: ResponseEnvelope) -> ResponseEnvelope:
    http_logger.info(render_response(response))
    return response


def request_logger(request: RequestDescriptor) -> RequestDescriptor:
    http_logger.info(render_request(request))
    return request


def default_chain():
    """Request logging, then XML decoding followed by response logging."""
    return InterceptorChain([
        Interceptor("request_logger", Stage.REQUEST, request_logger),
        Interceptor("xml_body_decoder", Stage.RESPONSE, xml_body_decoder),
        Interceptor("response_logger", Stage.RESPONSE, response_logger),
    ])
