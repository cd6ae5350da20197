from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class FileDescriptor:
    """
    A local file read into memory, ready to be uploaded.
    """

    name: str
    buffer: bytes
    size: int
    extension: str

    def __repr__(self):
        return f"<FileDescriptor {self.name} ({self.size} bytes)>"


@dataclass(frozen=True)
class UploadCredential:
    """
    Server-issued authorization to write exactly one object to the object store.

    ``fields`` keeps the order the server returned them in; the storage
    provider's signature covers the form fields in that order.
    """

    base_url: str
    fields: Mapping[str, Any]
    link: str

    REQUIRED_KEYS = ("baseUrl", "fields", "link")

    @classmethod
    def from_response_body(cls, body):
        """
        Build a credential from the body of the generate-upload-credentials call.

        Args:
            body (dict): Decoded response body

        Returns:
            UploadCredential

        Raises:
            ValueError: If the body does not have the expected shape
        """
        if not isinstance(body, dict):
            raise ValueError(f"Upload credentials must be an object, got {type(body).__name__}")

        missing = [key for key in cls.REQUIRED_KEYS if key not in body]
        if missing:
            raise ValueError(f"Upload credentials missing keys: {', '.join(missing)}")

        fields = body["fields"]
        if not isinstance(fields, dict):
            raise ValueError("Upload credential 'fields' must be an object")

        return cls(
            base_url=body["baseUrl"],
            fields=MappingProxyType(dict(fields)),
            link=body["link"],
        )


@dataclass(frozen=True)
class AttachmentRecord:
    """Title/link pair linking an uploaded object to a maintenance."""

    title: str
    link: str

    def to_payload(self):
        return {"title": self.title, "link": self.link}


@dataclass(frozen=True)
class MultipartPayload:
    """
    A fully serialized multipart/form-data body.
    """

    body: bytes
    boundary: str

    @property
    def content_type(self):
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def content_length(self):
        return len(self.body)

    def headers(self):
        # content-length is sent explicitly; the object store rejects chunked uploads
        return {
            "content-type": self.content_type,
            "content-length": str(self.content_length),
        }
