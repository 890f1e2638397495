"""
Tests for settings assembly, wiring and small helpers.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from backend.app.config import Settings
from backend.app.container import build_services
from backend.app.queue import MemoryJobQueue, SqlJobQueue, create_job_queue
from backend.app.queue.base import RetryPolicy
from backend.app.services.export_service import content_disposition, sanitize_filename
from worker.main import parse_args, resolve_settings


class TestSettings:
    """Settings are assembled once and never mutated."""

    def test_database_url_from_parts(self):
        settings = Settings(
            _env_file=None,
            database_url=None,
            postgres_user="u",
            postgres_password="p",
            postgres_host="db",
            postgres_port=5433,
            postgres_db="scripture",
        )
        assert settings.database_url == "postgresql+asyncpg://u:p@db:5433/scripture"

    def test_export_directory_defaults_under_data_root(self, tmp_path):
        settings = Settings(_env_file=None, data_root=tmp_path, export_directory=None)
        assert settings.export_directory == tmp_path / "exports"

    def test_settings_are_frozen(self, settings):
        with pytest.raises(PydanticValidationError):
            settings.queue_batch_size = 10

    def test_retry_policy_from_settings(self, settings):
        policy = RetryPolicy.from_settings(settings)

        assert policy.retry_limit == 0
        assert policy.retry_delay == 10
        assert policy.retry_permanent_errors is True


class TestWiring:
    """Queue backends and the service container follow the settings."""

    def test_memory_backend(self, settings):
        assert isinstance(create_job_queue(settings), MemoryJobQueue)

    def test_sql_backend_needs_database(self, settings):
        sql_settings = settings.model_copy(update={"queue_backend": "sql"})

        with pytest.raises(ValueError):
            create_job_queue(sql_settings)

    async def test_build_services(self, settings):
        services = build_services(settings.model_copy(update={"queue_backend": "sql"}))
        try:
            assert isinstance(services.queue, SqlJobQueue)
            assert services.store.directory == Path(settings.export_directory)
            assert services.store.ttl_seconds == settings.export_ttl_seconds
        finally:
            await services.close()

    def test_worker_cli_overrides(self):
        settings = resolve_settings(parse_args(["--batch-size", "7", "--poll-interval", "0.5"]))

        assert settings.queue_batch_size == 7
        assert settings.queue_poll_interval == 0.5


class TestSanitizeFilename:
    def test_unsafe_characters_replaced(self):
        assert sanitize_filename('  Kitab: "Draft"/1 ') == "Kitab_ _Draft__1.zip"

    def test_all_reserved_characters(self):
        assert sanitize_filename('a<b>c:d"e/f\\g|h?i*j') == "a_b_c_d_e_f_g_h_i_j.zip"

    def test_control_characters_dropped(self):
        assert sanitize_filename("Kitab\r\n\tBaru\x00") == "KitabBaru.zip"


class TestContentDisposition:
    def test_ascii_name_is_quoted_as_is(self):
        assert content_disposition("Kitab_ _Draft__1.zip") == 'attachment; filename="Kitab_ _Draft__1.zip"'

    def test_devanagari_name_uses_extended_form(self):
        header = content_disposition("बाइबिल.zip")

        assert header.startswith('attachment; filename="export.zip"; filename*=utf-8\'\'')
        assert header.isascii()
