import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment (and .env)."""

    api_key: str
    base_url: str = "https://amonamarth.fieldcontrol.com.br"
    api_key_header: str = "x-api-key"
    timeout: float = 30
    attachments_dir: str = "data"
    location_document_number: str = "46849145851"
    segment_name: str = "Ar condicionado"
    maintenance_type_name: str = "Manutenção corretiva"
    maintenance_message: str = "Manutenção com anexos vinculados"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ

        api_key = env.get("FIELDCONTROL_API_KEY")
        if not api_key:
            raise ValueError("Missing required setting FIELDCONTROL_API_KEY. "
                             "Please check your environment variables.")

        defaults = cls(api_key=api_key)
        try:
            timeout = float(env.get("FIELDCONTROL_TIMEOUT") or defaults.timeout)
        except ValueError:
            raise ValueError(f"FIELDCONTROL_TIMEOUT must be a number, got {env.get('FIELDCONTROL_TIMEOUT')!r}")

        return cls(
            api_key=api_key,
            base_url=env.get("FIELDCONTROL_BASE_URL") or defaults.base_url,
            api_key_header=env.get("FIELDCONTROL_API_KEY_HEADER") or defaults.api_key_header,
            timeout=timeout,
            attachments_dir=env.get("ATTACHMENTS_DIR") or defaults.attachments_dir,
            location_document_number=env.get("LOCATION_DOCUMENT_NUMBER") or defaults.location_document_number,
            segment_name=env.get("SEGMENT_NAME") or defaults.segment_name,
            maintenance_type_name=env.get("MAINTENANCE_TYPE_NAME") or defaults.maintenance_type_name,
            maintenance_message=env.get("MAINTENANCE_MESSAGE") or defaults.maintenance_message,
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).upper(),
            log_file=env.get("LOG_FILE") or None,
        )

    def log_summary(self):
        logger.info("Field Control API Configuration:")
        logger.info(f"  Base URL: {self.base_url}")
        logger.info(f"  API Key: {'Loaded' if self.api_key else 'Missing'}")
        logger.info(f"  Attachments dir: {self.attachments_dir}")
        logger.info(f"  Timeout: {self.timeout}s")
