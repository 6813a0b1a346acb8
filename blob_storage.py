import logging
import threading
from datetime import datetime
from typing import Dict, Optional, Tuple

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient, BlobServiceClient

from config import Settings
from utils.result import Result

logger = logging.getLogger(__name__)

# One client (and credential, when one is created) per storage target for the process
_service_clients: Dict[Tuple[Optional[str], Optional[str]], Tuple[BlobServiceClient, Optional[DefaultAzureCredential]]] = {}
_clients_lock = threading.Lock()


def create_service_client(settings: Settings) -> Tuple[BlobServiceClient, Optional[DefaultAzureCredential]]:
    """
    Build the Blob service client.

    A connection string is used when configured (local development);
    otherwise the storage account is reached with the default Azure
    credential chain (managed identity when hosted in Azure).

    Returns:
        tuple: The client and the credential it owns, None for connection strings
    """
    if settings.storage_connection_string:
        logger.debug("Using storage connection string")
        return BlobServiceClient.from_connection_string(settings.storage_connection_string), None

    account_url = f"https://{settings.storage_account}.blob.core.windows.net"
    logger.debug(f"Using default Azure credential for {account_url}")
    credential = DefaultAzureCredential()
    return BlobServiceClient(account_url=account_url, credential=credential), credential


def get_service_client(settings: Settings) -> BlobServiceClient:
    """Shared client for the configured storage target, created on first use."""
    key = (settings.storage_connection_string, settings.storage_account)
    with _clients_lock:
        if key not in _service_clients:
            _service_clients[key] = create_service_client(settings)
        return _service_clients[key][0]


def close_service_clients() -> None:
    """Close every shared client and credential; called on application shutdown."""
    with _clients_lock:
        for client, credential in _service_clients.values():
            client.close()
            if credential is not None:
                credential.close()
        _service_clients.clear()


class BlobStore:
    """
    The single workbook blob the API serves.

    Attributes:
        container_name: Container holding the workbook
        blob_name: Name of the workbook blob
    """

    def __init__(self, service_client: BlobServiceClient, container_name: str, blob_name: str):
        self.service_client = service_client
        self.container_name = container_name
        self.blob_name = blob_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlobStore":
        return cls(get_service_client(settings), settings.container_name, settings.blob_name)

    def _blob_client(self) -> BlobClient:
        return self.service_client.get_blob_client(container=self.container_name, blob=self.blob_name)

    def upload(self, content: bytes) -> Result[str]:
        """
        Replace the stored workbook.

        Args:
            content: Raw workbook bytes

        Returns:
            Result[str]: The storage request id on success
        """
        log_context = {"container": self.container_name, "blob": self.blob_name, "size": len(content)}
        try:
            response = self._blob_client().upload_blob(content, overwrite=True)
        except AzureError as e:
            logger.exception("Blob upload failed", extra={**log_context, "error": str(e)})
            return Result.server_error(f"Upload failed: {str(e)}")

        request_id = response.get("request_id")
        logger.info("Uploaded workbook", extra={**log_context, "storage_request_id": request_id})
        return Result.ok(request_id)

    def download(self) -> Result[bytes]:
        """
        Fetch the stored workbook.

        Returns:
            Result[bytes]: Workbook bytes, 404 when the blob does not exist
        """
        log_context = {"container": self.container_name, "blob": self.blob_name}
        try:
            content = self._blob_client().download_blob().readall()
        except ResourceNotFoundError:
            logger.error("Workbook blob not found", extra=log_context)
            return Result.not_found("File not found")
        except AzureError as e:
            logger.exception("Blob download failed", extra={**log_context, "error": str(e)})
            return Result.server_error(str(e))

        logger.info("Downloaded workbook", extra={**log_context, "size": len(content)})
        return Result.ok(content)

    def last_modified(self) -> Result[datetime]:
        """Last-modified timestamp of the stored workbook."""
        log_context = {"container": self.container_name, "blob": self.blob_name}
        try:
            properties = self._blob_client().get_blob_properties()
        except ResourceNotFoundError:
            logger.error("Workbook blob not found", extra=log_context)
            return Result.not_found("File not found")
        except AzureError as e:
            logger.exception("Reading blob properties failed", extra={**log_context, "error": str(e)})
            return Result.server_error(str(e))

        return Result.ok(properties.last_modified)
