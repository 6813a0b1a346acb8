from fastapi import FastAPI, File, Request, Security, UploadFile, status, HTTPException
import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from pydantic import ValidationError
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader

from blob_storage import BlobStore, close_service_clients
from config import API_KEY_HEADER, SHEET_SELECTOR, Settings, api_key_from_env
from spreadsheet_process import SpreadsheetProcessor


# Create logs directory if it doesn't exist
log_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
os.makedirs(log_dir, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Add file handler to write logs to file
log_file_path = os.path.join(log_dir, f"app_{datetime.now().strftime('%Y%m%d')}.log")
file_handler = logging.FileHandler(log_file_path)
file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
logger.addHandler(file_handler)

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_settings() -> Settings:
    """Configuration is read per request so environment changes apply without a restart."""
    return Settings.from_env()


def get_blob_store() -> BlobStore:
    return BlobStore.from_settings(get_settings())


def verify_api_key(request_api_key: Optional[str] = Security(api_key_header)) -> None:
    """
    Reject requests that do not carry the configured API key.

    A missing server-side key rejects every request.
    """
    api_key = api_key_from_env()
    if not api_key or request_api_key != api_key:
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid API key"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_service_clients()


# Initialize FastAPI app with metadata
app = FastAPI(
    title="Spreadsheet Data API",
    description="API that uploads a spreadsheet to Azure Blob Storage and returns its tabs as filtered JSON",
    version="1.0.0",
    docs_url="/api-docs",
    redoc_url="/redoc",
    dependencies=[Security(verify_api_key)],
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(result) -> JSONResponse:
    return JSONResponse(status_code=result.status_code.value, content=result.error_content())


@app.exception_handler(ValidationError)
async def invalid_settings_handler(request: Request, exc: ValidationError):
    logger.error(f"Invalid configuration: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": f"Invalid configuration: {exc.error_count()} invalid setting(s)"}
    )


def to_iso_string(value: datetime) -> str:
    """
    Format a timestamp as UTC with millisecond precision, e.g. 2024-05-01T12:30:00.000Z.

    Naive timestamps are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond // 1000:03d}Z"


# API Endpoints
@app.post(
    "/upload",
    tags=["Spreadsheet"]
)
async def upload_spreadsheet(file: Optional[UploadFile] = File(None)):
    """
    Upload a spreadsheet, replacing the stored workbook.

    Returns:
        dict: Confirmation message and the storage request id
    """
    if file is None:
        logger.warning("Upload request without a file")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "No file uploaded."})

    content = await file.read()
    logger.info(f"Uploading spreadsheet {file.filename} ({len(content)} bytes)")

    result = await run_in_threadpool(get_blob_store().upload, content)
    if not result.is_success():
        return error_response(result)

    return {
        "message": "File uploaded successfully.",
        "request_id": result.data
    }


@app.get(
    "/data",
    tags=["Spreadsheet"]
)
async def get_sheet_data(request: Request):
    """
    Query one tab of the stored spreadsheet and return it as JSON.

    The ``tab`` query parameter selects the worksheet. Every other query
    parameter filters rows: ``?Region=East,West&Status=Active`` keeps rows
    whose Region is East or West and whose Status is Active.

    Returns:
        list: Transformed rows of the tab that match all filters
    """
    query_params = dict(request.query_params)
    sheet_name = query_params.pop(SHEET_SELECTOR, None)

    if not sheet_name:
        logger.warning("Data request without a tab parameter")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Tab query parameter is required"}
        )

    logger.info(f"Serving tab {sheet_name!r} with filters {query_params}")
    settings = get_settings()

    download_result = await run_in_threadpool(get_blob_store().download)
    if not download_result.is_success():
        return error_response(download_result)

    result = await run_in_threadpool(
        SpreadsheetProcessor.process_sheet,
        download_result.data,
        sheet_name,
        query_params,
        settings.transform_schema,
    )
    if not result.is_success():
        return error_response(result)
    return result.data


@app.get(
    "/lastmodified",
    tags=["Spreadsheet"]
)
async def get_last_modified():
    """
    Get the "Last Modified" date of the stored spreadsheet.

    Returns:
        dict: ``{"lastModified": "2024-05-01T12:30:00.000Z"}``
    """
    result = await run_in_threadpool(get_blob_store().last_modified)
    if not result.is_success():
        return error_response(result)
    return {"lastModified": to_iso_string(result.data)}


@app.get(
    "/healthcheck",
    tags=["Health"],
    response_class=PlainTextResponse
)
async def healthcheck():
    return "Everything is working okay"


# Run the application if executed directly
if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Spreadsheet Data API in development mode.")
    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port, reload=True)
