# Helpers to pull data out of API response envelopes
from models import ResponseEnvelope


def get_data(response: ResponseEnvelope):
    return response.body


def get_items(response: ResponseEnvelope):
    """
    Items of a paged list response (``{"items": [...], "totalCount": n}``).

    Raises:
        ValueError: If the body is not a paged list
    """
    body = response.body
    if not isinstance(body, dict) or not isinstance(body.get("items"), list):
        raise ValueError(f"Expected a paged list response, got: {body!r}")
    return body["items"]


def get_first_item(response: ResponseEnvelope):
    items = get_items(response)
    if not items:
        url = response.request.absolute_url() if response.request else "response"
        raise LookupError(f"No items returned by {url}")
    return items[0]
