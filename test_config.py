import pytest
from pydantic import ValidationError

from config import Settings, TransformSchema, api_key_from_env


class TestSettings:
    """
    Tests for Settings.from_env.
    """

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "MY_API_KEY", "AZURE_STORAGE_CONNECTION_STRING", "AZURE_STORAGE_ACCOUNT",
            "BLOB_CONTAINER", "BLOB_NAME", "TRANSFORM_SCHEMA", "PORT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = Settings.from_env()

        assert settings.api_key is None
        assert settings.container_name == "data"
        assert settings.blob_name == "spreadsheet.xlsx"
        assert settings.transform_schema == TransformSchema.DUAL
        assert settings.port == 3000

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MY_API_KEY", "secret")
        monkeypatch.setenv("AZURE_STORAGE_ACCOUNT", "houbuild")
        monkeypatch.setenv("TRANSFORM_SCHEMA", "SINGLE")
        monkeypatch.setenv("PORT", "8080")

        settings = Settings.from_env()

        assert settings.api_key == "secret"
        assert settings.storage_account == "houbuild"
        assert settings.transform_schema == TransformSchema.SINGLE
        assert settings.port == 8080

    def test_empty_api_key_is_unset(self, monkeypatch):
        monkeypatch.setenv("MY_API_KEY", "")

        assert Settings.from_env().api_key is None

    def test_unknown_schema_is_rejected(self, monkeypatch):
        monkeypatch.setenv("TRANSFORM_SCHEMA", "triple")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_invalid_port_is_rejected(self, monkeypatch):
        monkeypatch.setenv("PORT", "not-a-port")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_api_key_is_read_without_other_settings(self, monkeypatch):
        monkeypatch.setenv("MY_API_KEY", "secret")
        monkeypatch.setenv("TRANSFORM_SCHEMA", "triple")

        assert api_key_from_env() == "secret"
