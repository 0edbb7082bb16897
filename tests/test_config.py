"""Tests for environment-driven settings."""

from __future__ import annotations

import pydantic
import pytest

from embedstore.config import DEFAULT_MODEL, DEFAULT_MODEL_DIMENSIONS, Settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env or exported variables out of these tests
    monkeypatch.chdir(tmp_path)
    for name in (
        "EMBEDSTORE_DATABASE_URL",
        "EMBEDSTORE_DEFAULT_MODEL",
        "EMBEDSTORE_MODEL_DIMENSIONS",
        "EMBEDSTORE_MAX_CHUNK_CHARS",
        "EMBEDSTORE_SEARCH_OVERFETCH",
        "EMBEDSTORE_PAGE_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.database_url is None
        assert s.default_model == DEFAULT_MODEL
        assert s.max_chunk_chars == 2000
        assert s.page_size == 100
        assert s.dimensions_registry() == DEFAULT_MODEL_DIMENSIONS

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("EMBEDSTORE_MAX_CHUNK_CHARS", "4000")
        monkeypatch.setenv("EMBEDSTORE_DATABASE_URL", "sqlite+aiosqlite:///e.db")
        s = Settings()
        assert s.max_chunk_chars == 4000
        assert s.database_url == "sqlite+aiosqlite:///e.db"

    def test_model_dimensions_json(self, monkeypatch):
        monkeypatch.setenv("EMBEDSTORE_MODEL_DIMENSIONS", '{"my-model": 384}')
        s = Settings()
        assert s.model_dimensions == {"my-model": 384}
        registry = s.dimensions_registry()
        assert registry["my-model"] == 384
        assert registry["text-embedding-3-large"] == 3072

    def test_override_builtin_dimension(self):
        s = Settings(model_dimensions={"text-embedding-3-small": 512})
        assert s.dimensions_registry()["text-embedding-3-small"] == 512
        assert DEFAULT_MODEL_DIMENSIONS["text-embedding-3-small"] == 1536

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("EMBEDSTORE_PAGE_SIZE=25\n")
        assert Settings().page_size == 25

    @pytest.mark.parametrize(
        "field", ["max_chunk_chars", "page_size", "search_overfetch"]
    )
    def test_rejects_non_positive(self, field):
        with pytest.raises(pydantic.ValidationError):
            Settings(**{field: 0})
