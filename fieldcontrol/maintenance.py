import logging

from fieldcontrol.client import ApiClient, ensure_success
from fieldcontrol.config import Settings
from fieldcontrol.responses import get_data, get_first_item
from fieldcontrol.uploads import (
    list_data_files,
    read_files,
    upload_attachments,
    verify_attachments,
)

logger = logging.getLogger(__name__)


async def find_first(client: ApiClient, path, **filters):
    """First item of a filtered list endpoint such as /locations or /segments."""
    params = {"page": 1, "perPage": 1}
    params.update(filters)
    response = await client.get(path, params=params)
    ensure_success(response, f"list {path}")
    return get_first_item(response)


async def create_maintenance(client: ApiClient, message, location_id, segment_id, maintenance_type_id, attachments):
    """
    Create a maintenance with every attachment record linked in a single call.

    Args:
        attachments (list): Attachment payloads ({"title", "link"})

    Returns:
        dict: The created maintenance
    """
    response = await client.post("/maintenances", json={
        "message": message,
        "location": {"id": location_id},
        "segment": {"id": segment_id},
        "maintenanceType": {"id": maintenance_type_id},
        "attachments": list(attachments),
    })
    ensure_success(response, "create maintenance")
    maintenance = get_data(response)
    if not isinstance(maintenance, dict) or "id" not in maintenance:
        raise ValueError(f"Maintenance creation returned no id: {maintenance!r}")
    return maintenance


async def run(client: ApiClient, settings: Settings):
    """
    Upload the files of the attachments dir, open a maintenance with them and verify it.
    """
    paths = list_data_files(settings.attachments_dir)
    if not paths:
        raise FileNotFoundError(f"No files to upload in {settings.attachments_dir}")

    files = await read_files(paths)
    logger.info(f"Read {len(files)} file(s) from {settings.attachments_dir}")

    # Every upload must succeed before the maintenance is created
    batch = await upload_attachments(client, files)

    location = await find_first(client, "/locations", documentNumberEq=settings.location_document_number)
    segment = await find_first(client, "/segments", nameEq=settings.segment_name)
    maintenance_type = await find_first(client, "/maintenance-types", nameEq=settings.maintenance_type_name)

    maintenance = await create_maintenance(
        client,
        message=settings.maintenance_message,
        location_id=location["id"],
        segment_id=segment["id"],
        maintenance_type_id=maintenance_type["id"],
        attachments=batch.to_payload(),
    )
    logger.info(f"Created maintenance {maintenance['id']} with {len(batch)} attachment(s)")

    await verify_attachments(client, maintenance["id"], files)
    logger.info(f"Maintenance {maintenance['id']} attachments verified")
    return maintenance
