"""
Attachment upload workflow.

Each file goes through READ -> REQUEST_CREDENTIALS -> BUILD_PAYLOAD -> UPLOAD ->
RECORD_LINK. Uploads go straight to the object store using single-use
credentials issued by the API (an S3 style signed POST); the resulting links
are then attached to a maintenance in one call.
"""
import asyncio
import logging
import os
from contextlib import contextmanager
from enum import Enum

from urllib3 import encode_multipart_formdata
from urllib3.filepost import choose_boundary

from fieldcontrol.client import ApiClient, ensure_success
from fieldcontrol.responses import get_items
from models import AttachmentRecord, FileDescriptor, MultipartPayload, UploadCredential

logger = logging.getLogger(__name__)

CREDENTIALS_PATH = "/attachments/actions/generate-upload-credentials"
FILE_FIELD = "file"


class UploadStage(Enum):
    READ = "read"
    REQUEST_CREDENTIALS = "request_credentials"
    BUILD_PAYLOAD = "build_payload"
    UPLOAD = "upload"
    RECORD_LINK = "record_link"


class UploadError(Exception):
    """A stage of the upload workflow failed for one file; the batch is aborted."""

    def __init__(self, stage: UploadStage, file_name, cause):
        self.stage = stage
        self.file_name = file_name
        self.cause = cause
        super().__init__(f"Upload of '{file_name}' failed at {stage.value}: {cause}")

    def to_dict(self):
        cause = self.cause.to_dict() if hasattr(self.cause, "to_dict") else {
            "name": type(self.cause).__name__,
            "message": str(self.cause),
        }
        return {
            "name": type(self).__name__,
            "stage": self.stage.value,
            "file": self.file_name,
            "cause": cause,
        }


class VerificationError(Exception):
    """An uploaded attachment does not match what was sent."""

    def __init__(self, check, expected, actual, title=None):
        self.check = check
        self.expected = expected
        self.actual = actual
        self.title = title
        subject = f" for '{title}'" if title else ""
        super().__init__(f"{check} mismatch{subject}: expected {expected!r}, got {actual!r}")

    def to_dict(self):
        return {
            "name": type(self).__name__,
            "check": self.check,
            "title": self.title,
            "expected": self.expected,
            "actual": self.actual,
        }


@contextmanager
def upload_stage(stage: UploadStage, file_name):
    logger.debug(f"[UPLOAD] {file_name}: {stage.value}")
    try:
        yield
    except UploadError:
        raise
    except Exception as e:
        raise UploadError(stage, file_name, e) from e


# --- READ ---

def list_data_files(directory):
    """
    Absolute paths of the regular, non-hidden files in ``directory``, sorted by name.
    """
    with upload_stage(UploadStage.READ, directory):
        names = sorted(os.listdir(directory))
    paths = [os.path.abspath(os.path.join(directory, name)) for name in names if not name.startswith(".")]
    return [path for path in paths if os.path.isfile(path)]


def _read_bytes(path):
    with open(path, "rb") as f:
        return f.read()


async def read_file(path) -> FileDescriptor:
    name = os.path.basename(path)
    with upload_stage(UploadStage.READ, name):
        loop = asyncio.get_running_loop()
        buffer = await loop.run_in_executor(None, _read_bytes, path)

    return FileDescriptor(
        name=name,
        buffer=buffer,
        size=len(buffer),
        extension=os.path.splitext(name)[1].lstrip("."),
    )


async def read_files(paths):
    """Read every file concurrently; any unreadable file fails the whole batch."""
    return list(await asyncio.gather(*(read_file(path) for path in paths)))


# --- REQUEST_CREDENTIALS ---

async def request_credentials(client: ApiClient, file: FileDescriptor) -> UploadCredential:
    """
    Ask the API for a single-use upload credential bound to this file's size and extension.
    """
    with upload_stage(UploadStage.REQUEST_CREDENTIALS, file.name):
        response = await client.post(CREDENTIALS_PATH, json={
            "size": file.size,
            "extension": file.extension,
        })
        ensure_success(response, "generate upload credentials")
        return UploadCredential.from_response_body(response.body)


# --- BUILD_PAYLOAD ---

def build_form_data(credential: UploadCredential, file: FileDescriptor) -> MultipartPayload:
    """
    Serialize the credential fields, in order, followed by the file itself.

    The object store validates the policy signature against the form fields,
    and ignores anything after the file field, so the file must come last.
    """
    with upload_stage(UploadStage.BUILD_PAYLOAD, file.name):
        fields = [
            (key, value if isinstance(value, (str, bytes)) else str(value))
            for key, value in credential.fields.items()
        ]
        if any(key == FILE_FIELD for key, _ in fields):
            raise ValueError(f"Credential fields must not contain a '{FILE_FIELD}' field")
        fields.append((FILE_FIELD, (file.name, file.buffer)))

        boundary = choose_boundary()
        body, _ = encode_multipart_formdata(fields, boundary=boundary)
        return MultipartPayload(body=body, boundary=boundary)


# --- UPLOAD ---

async def upload_file(client: ApiClient, credential: UploadCredential, payload: MultipartPayload, file: FileDescriptor):
    with upload_stage(UploadStage.UPLOAD, file.name):
        response = await client.post(credential.base_url, data=payload.body, headers=payload.headers())
        ensure_success(response, "upload to object store")
        logger.info(f"[UPLOAD] {file.name} uploaded ({payload.content_length} bytes on the wire)")
        return response


# --- RECORD_LINK ---

class UploadBatch:
    """
    Attachment records of one run, appended only after an upload completes.

    Also remembers every credential link handed out in the batch so a
    credential can never be used for a second file.
    """

    def __init__(self):
        self._attachments = []
        self._claimed_links = set()

    @property
    def attachments(self):
        return tuple(self._attachments)

    def claim(self, file: FileDescriptor, credential: UploadCredential):
        with upload_stage(UploadStage.REQUEST_CREDENTIALS, file.name):
            if credential.link in self._claimed_links:
                raise ValueError(f"Upload credential for {credential.link} was already used in this batch")
            self._claimed_links.add(credential.link)

    def record(self, file: FileDescriptor, credential: UploadCredential) -> AttachmentRecord:
        with upload_stage(UploadStage.RECORD_LINK, file.name):
            if credential.link not in self._claimed_links:
                raise ValueError("Cannot record a link for an unclaimed credential")
            attachment = AttachmentRecord(title=file.name, link=credential.link)
            self._attachments.append(attachment)
            return attachment

    def to_payload(self):
        return [attachment.to_payload() for attachment in self._attachments]

    def __len__(self):
        return len(self._attachments)


async def upload_attachment(client: ApiClient, file: FileDescriptor, batch: UploadBatch) -> AttachmentRecord:
    credential = await request_credentials(client, file)
    batch.claim(file, credential)
    payload = build_form_data(credential, file)
    await upload_file(client, credential, payload, file)
    return batch.record(file, credential)


async def upload_attachments(client: ApiClient, files, batch=None) -> UploadBatch:
    """
    Upload every file in order, one at a time.

    Returns:
        UploadBatch: The batch holding one attachment record per file

    Raises:
        UploadError: On the first failing stage; later files are not attempted
    """
    batch = batch if batch is not None else UploadBatch()
    for file in files:
        attachment = await upload_attachment(client, file, batch)
        logger.info(f"[UPLOAD] Recorded attachment {attachment.title} -> {attachment.link}")
    return batch


# --- Verification ---

async def verify_attachments(client: ApiClient, maintenance_id, files, per_page=None):
    """
    Check a maintenance holds exactly the uploaded files and each link serves the right bytes.

    Args:
        client (ApiClient): API client
        maintenance_id: Id of the created maintenance
        files (list): FileDescriptors that were uploaded
        per_page (int): Page size of the attachment listing, at least 10

    Raises:
        VerificationError: On the first mismatch
    """
    per_page = per_page or max(10, len(files))
    response = await client.get(f"/maintenances/{maintenance_id}/attachments", params={
        "page": 1,
        "perPage": per_page,
    })
    ensure_success(response, "list maintenance attachments")
    attachments = get_items(response)

    if len(attachments) != len(files):
        raise VerificationError("attachment count", len(files), len(attachments))

    by_title = {attachment.get("title"): attachment for attachment in attachments}
    for file in files:
        attachment = by_title.get(file.name)
        if attachment is None:
            raise VerificationError("attachment title", file.name, sorted(map(str, by_title)), title=file.name)

        head = await client.head(attachment["link"])
        if head.status_code != 200:
            raise VerificationError("link status", 200, head.status_code, title=file.name)

        content_length = head.headers.get("content-length")
        try:
            size = int(content_length)
        except (TypeError, ValueError):
            size = content_length
        if size != file.size:
            raise VerificationError("content length", file.size, size, title=file.name)

        logger.info(f"[VERIFY] {file.name}: {size} bytes reachable at {attachment['link']}")

    return attachments
