import json
import itertools
from email import policy
from email.parser import BytesParser
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from fieldcontrol.client import ApiClient

BASE_URL = "https://api.fieldcontrol.test"
BUCKET_URL = "https://attachments-bucket.s3.amazonaws.com/"
API_KEY = "test-api-key-123"


def make_response(status=200, body=b"", headers=None, reason="OK"):
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
        headers = {"content-type": "application/json; charset=utf-8", **(headers or {})}
    elif isinstance(body, str):
        body = body.encode("utf-8")
    response._content = body
    response.headers = CaseInsensitiveDict(headers or {})
    response.encoding = "utf-8"
    return response


def parse_multipart(content_type, body):
    """Return the (name, filename, payload) parts of a multipart/form-data body, in order."""
    message = BytesParser(policy=policy.default).parsebytes(
        b"Content-Type: " + content_type.encode("ascii") + b"\r\n\r\n" + body
    )
    parts = []
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        filename = part.get_param("filename", header="content-disposition")
        parts.append((name, filename, part.get_payload(decode=True)))
    return parts


class FakeFieldControl:
    """
    In-memory stand-in for the Field Control API and its object store.

    Installed as ``session.request``; records every call it receives.
    """

    def __init__(self):
        self.calls = []
        self.objects = {}
        self.maintenances = {}
        self.issued_credentials = []
        self.fail_upload_on = set()
        self._counter = itertools.count(1)

    def paths(self, method=None):
        return [
            (m, url) for m, url, _ in self.calls
            if method is None or m == method
        ]

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        path = url[len(BASE_URL):] if url.startswith(BASE_URL) else url

        if method == "POST" and path == "/attachments/actions/generate-upload-credentials":
            return self._generate_credentials(kwargs["json"])
        if method == "POST" and url == BUCKET_URL:
            return self._store_object(kwargs["headers"], kwargs["data"])
        if method == "HEAD" and url in self.objects:
            return make_response(200, headers={"content-length": str(len(self.objects[url]))})
        if method == "HEAD":
            return make_response(404, reason="Not Found")
        if method == "GET" and path in ("/locations", "/segments", "/maintenance-types"):
            item_id = path.strip("/").rstrip("s") + "-1"
            return make_response(200, {"items": [{"id": item_id}], "totalCount": 1})
        if method == "POST" and path == "/maintenances":
            maintenance_id = f"maintenance-{next(self._counter)}"
            self.maintenances[maintenance_id] = kwargs["json"]
            return make_response(201, {"id": maintenance_id, **kwargs["json"]}, reason="Created")
        if method == "GET" and path.startswith("/maintenances/") and path.endswith("/attachments"):
            maintenance_id = path.split("/")[2]
            attachments = self.maintenances[maintenance_id]["attachments"]
            items = [{"id": index, **attachment} for index, attachment in enumerate(attachments, 1)]
            return make_response(200, {"items": items, "totalCount": len(items)})
        return make_response(404, {"message": "not found"}, reason="Not Found")

    def _generate_credentials(self, body):
        number = next(self._counter)
        key = f"attachments/{number}.{body['extension']}"
        credential = {
            "baseUrl": BUCKET_URL,
            "fields": {
                "key": key,
                "bucket": "attachments-bucket",
                "X-Amz-Algorithm": "AWS4-HMAC-SHA256",
                "X-Amz-Credential": "AKIAEXAMPLE/20260101/us-east-1/s3/aws4_request",
                "X-Amz-Date": "20260101T000000Z",
                "Policy": f"policy-{number}-{body['size']}",
                "X-Amz-Signature": f"signature-{number}",
            },
            "link": f"{BUCKET_URL}{key}",
        }
        self.issued_credentials.append(credential)
        return make_response(200, credential)

    def _store_object(self, headers, data):
        parts = parse_multipart(headers["content-type"], data)
        fields = {name: payload for name, _, payload in parts}
        key = fields["key"].decode("utf-8")
        if key in self.fail_upload_on:
            return make_response(403, "<Error><Code>AccessDenied</Code></Error>",
                                 headers={"content-type": "application/xml"}, reason="Forbidden")
        self.objects[f"{BUCKET_URL}{key}"] = fields["file"]
        return make_response(204, reason="No Content")


@pytest.fixture
def fake_api():
    return FakeFieldControl()


@pytest.fixture
def client(fake_api):
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = fake_api
    return ApiClient(base_url=BASE_URL, api_key=API_KEY, session=session)
