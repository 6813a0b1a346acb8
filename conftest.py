"""
Pytest configuration file.

This file is automatically loaded by pytest and provides global test configuration.
It ensures the project's source directory is added to the Python path so that
modules can be imported properly during test execution, and builds small
workbooks in memory for the tests that parse spreadsheets.
"""
import io
import os
import sys

import pandas as pd
import pytest

# Add the current directory to the Python path
# This ensures imports work correctly when running tests
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

TEST_API_KEY = "test-api-key"


def build_workbook(sheets):
    """
    Write DataFrames to an in-memory .xlsx workbook.

    Args:
        sheets (dict): Sheet name to pandas.DataFrame

    Returns:
        bytes: The workbook content
    """
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


@pytest.fixture
def staffing_df():
    """
    Fixture providing a staffing sheet in the dual engagement layout.

    Returns:
        pandas.DataFrame: Rows with names, engagements and a numeric column
    """
    return pd.DataFrame({
        "Name": ["Doe, Jane", "Smith, John", "Solo"],
        "Region": ["East", "West", "East"],
        "Current Eng.": ["Ext. at Acme - Widget", "Globex - Portal - Phase 2", None],
        "Primary Opp": [None, "Ext. at Initech - Migration", "Pipeline only"],
        "Manager": ["Brown, Alice", None, "Nobody"],
        "Hours": [40, 32, 20],
    })


@pytest.fixture
def workbook_bytes(staffing_df):
    """Workbook with a "Staffing" tab and an empty "Notes" tab."""
    return build_workbook({
        "Staffing": staffing_df,
        "Notes": pd.DataFrame(columns=["Note"]),
    })


@pytest.fixture
def api_key_env(monkeypatch):
    """Configure the server-side API key and return request headers carrying it."""
    monkeypatch.setenv("MY_API_KEY", TEST_API_KEY)
    return {"x-api-key": TEST_API_KEY}


@pytest.fixture
def make_workbook():
    """Fixture exposing build_workbook to tests that need custom sheets."""
    return build_workbook
