import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()  # take environment variables from .env

API_KEY_HEADER = "x-api-key"
SHEET_SELECTOR = "tab"


class TransformSchema(str, Enum):
    """
    Layout of the workbook the row transformer is applied to.

    - single: one composite column ("Primary Opp") producing Client/Project
    - dual: current engagement ("Current Eng.") plus pipeline ("Primary Opp")
    """
    SINGLE = "single"
    DUAL = "dual"


class Settings(BaseModel):
    """
    Runtime configuration read from the environment.

    Attributes:
        api_key: Value clients must send in the x-api-key header
        storage_connection_string: Azure Storage connection string (local development)
        storage_account: Storage account name used with managed identity
        container_name: Blob container holding the workbook
        blob_name: Name of the workbook blob
        transform_schema: Which derived-field layout the transformer produces
        port: Port the development server listens on
    """
    api_key: Optional[str] = None
    storage_connection_string: Optional[str] = None
    storage_account: Optional[str] = None
    container_name: str = "data"
    blob_name: str = "spreadsheet.xlsx"
    transform_schema: TransformSchema = TransformSchema.DUAL
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=api_key_from_env(),
            storage_connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING") or None,
            storage_account=os.getenv("AZURE_STORAGE_ACCOUNT") or None,
            container_name=os.getenv("BLOB_CONTAINER", "data"),
            blob_name=os.getenv("BLOB_NAME", "spreadsheet.xlsx"),
            transform_schema=os.getenv("TRANSFORM_SCHEMA", TransformSchema.DUAL.value).lower(),
            port=os.getenv("PORT", "3000"),
        )


def api_key_from_env() -> Optional[str]:
    """The configured API key, or None when unset."""
    return os.getenv("MY_API_KEY") or None
