"""
Spreadsheet Data API

This package provides an API that stores an uploaded spreadsheet in Azure
Blob Storage and serves its tabs back as filtered JSON.

Key modules:
- main.py: FastAPI application with API endpoints and API key check
- spreadsheet_process.py: Sheet parsing plus row transformation and filtering
- blob_storage.py: Azure Blob Storage access for the workbook
- config.py: Settings read from the environment / .env file
- utils/result.py: Result pattern implementation for error handling
"""
