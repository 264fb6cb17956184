"""
Configuration selection and production guards.
"""

import pytest

from app import create_app
from app.config import ProductionConfig, TestingConfig, config, database_url


class TestDatabaseUrl:
    def test_postgres_scheme_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/dossiers")
        assert database_url() == "postgresql://u:p@db:5432/dossiers"

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert database_url("sqlite:///fallback.db") == "sqlite:///fallback.db"
        assert database_url() is None


class TestProductionConfig:
    def test_refuses_missing_secrets(self, monkeypatch):
        for name in ("DATABASE_URL", "SECRET_KEY", "JWT_SECRET_KEY"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(RuntimeError) as exc:
            ProductionConfig()

        assert "DATABASE_URL" in str(exc.value)
        assert "JWT_SECRET_KEY" in str(exc.value)

    def test_create_app_checks_production_env(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError):
            create_app("production")

    def test_statement_timeout_on_top_of_pool_options(self):
        options = ProductionConfig.SQLALCHEMY_ENGINE_OPTIONS
        assert options["pool_pre_ping"] is True
        assert options["connect_args"]["options"] == "-c statement_timeout=30000"


class TestTestingConfig:
    def test_selected_by_name(self, app):
        assert config["testing"] is TestingConfig
        assert app.config["TESTING"] is True
        assert app.config["API_AUTH_ENABLED"] == "false"
