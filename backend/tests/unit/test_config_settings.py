"""Unit tests for application settings configuration."""

from pathlib import Path

import pytest

from knowledge_core.config import (
    IngestionConfig,
    Settings,
    parse_ingestion_config,
    resolve_backend_path,
)
from knowledge_core.domain.exceptions import ValidationError


def test_settings_uses_backend_env_file_independent_of_cwd():
    """Settings should always include backend/.env as an env source."""
    env_files = Settings.model_config.get("env_file")
    assert env_files is not None

    normalized = {str(Path(item)) for item in env_files}
    expected_backend_env = str(Path(__file__).resolve().parents[2] / ".env")

    assert expected_backend_env in normalized
    assert str(Path(".env")) in normalized


def test_registry_path_resolves_relative_to_backend():
    backend_dir = Path(__file__).resolve().parents[2]
    assert resolve_backend_path("data/knowledge_bases.yaml") == backend_dir / "data" / "knowledge_bases.yaml"
    assert resolve_backend_path("/etc/kb.yaml") == Path("/etc/kb.yaml")


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("RRF_K", "30")
    monkeypatch.setenv("WORKER_MAX_CONCURRENT_JOBS", "5")
    settings = Settings(_env_file=None)
    assert settings.rrf_k == 30
    assert settings.worker_max_concurrent_jobs == 5


class TestIngestionConfig:
    def test_defaults(self):
        config = IngestionConfig(source="https://github.com/o/r")
        assert config.extensions == [".md", ".txt"]
        assert (config.chunk_size, config.chunk_overlap) == (1000, 200)
        assert config.refresh_schedule is None

    def test_extensions_normalized(self):
        config = parse_ingestion_config({"source": "s", "extensions": ["md", ".mdx"]})
        assert config.extensions == [".md", ".mdx"]

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"source": ""},
            {"source": "s", "extensions": []},
            {"source": "s", "chunk_size": 0},
            {"source": "s", "chunk_overlap": -1},
            {"source": "s", "chunk_size": 100, "chunk_overlap": 150},
            {"source": "s", "refresh_schedule": "every hour"},
            {"source": "s", "typo_field": True},
        ],
    )
    def test_invalid_configs_raise_domain_error(self, data):
        with pytest.raises(ValidationError):
            parse_ingestion_config(data)

    def test_valid_cron_accepted(self):
        config = parse_ingestion_config({"source": "s", "refresh_schedule": "0 * * * *"})
        assert config.refresh_schedule == "0 * * * *"
