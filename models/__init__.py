# Models package initialization
from models.message import RequestDescriptor, ResponseEnvelope
from models.attachment import (
    AttachmentRecord,
    FileDescriptor,
    MultipartPayload,
    UploadCredential,
)

__all__ = [
    "RequestDescriptor",
    "ResponseEnvelope",
    "AttachmentRecord",
    "FileDescriptor",
    "MultipartPayload",
    "UploadCredential",
]
