"""Unit tests for settings and backend selection."""

import pytest

from sandboxer.configs import AppConfig, DatabaseConfig
from sandboxer.configs.database import PostgresConfig
from sandboxer.infra.container import get_container_backend
from sandboxer.infra.container.memory_backend import InMemoryContainerBackend
from sandboxer.infra.database import build_database_url
from sandboxer.infra.git import get_repository_backend
from sandboxer.infra.git.memory import InMemoryRepositoryBackend


class TestAppConfig:
    def test_defaults(self) -> None:
        config = AppConfig()
        assert config.Port == 48300
        assert config.Sandbox.StopTimeoutSeconds == 10
        assert config.Sandbox.DefaultAddons == ["code-server"]
        assert config.Sandbox.Docker.LabelNamespace == "sandboxer"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SANDBOXER_PORT", "9000")
        monkeypatch.setenv("SANDBOXER_ENVIRONMENT", "production")
        config = AppConfig()
        assert config.Port == 9000
        assert config.Environment == "production"


class TestBuildDatabaseUrl:
    def test_sqlite(self) -> None:
        assert build_database_url(DatabaseConfig(Engine="sqlite")) == "sqlite+aiosqlite:///sandboxer.db"

    def test_postgres_escapes_credentials(self) -> None:
        database = DatabaseConfig(
            Engine="postgres",
            Postgres=PostgresConfig(Host="db", User="admin", Password="p@ss/word", DBName="sbx"),
        )
        assert build_database_url(database) == "postgresql+asyncpg://admin:p%40ss%2Fword@db:5432/sbx"

    def test_unknown_engine(self) -> None:
        with pytest.raises(ValueError):
            build_database_url(DatabaseConfig(Engine="oracle"))


class TestBackendRegistry:
    def test_memory_backends(self) -> None:
        assert isinstance(get_container_backend("memory"), InMemoryContainerBackend)
        assert isinstance(get_repository_backend("MEMORY"), InMemoryRepositoryBackend)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            get_container_backend("lxc")
        with pytest.raises(ValueError):
            get_repository_backend("svn")
