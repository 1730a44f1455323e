"""
Tests per la validazione delle impostazioni di produzione.
"""

import pytest
from pydantic import ValidationError

from app.core.config import Settings


PRODUCTION = {
    "app_env": "production",
    "database_url": "postgresql+asyncpg://facturas:s3gr3ta@db:5432/facturas_db",
    "cors_origins": ["https://facturas.talleresprueba.es"],
    "debug": False,
}


class TestProductionSettings:

    def test_valid_production_settings(self):
        settings = Settings(**PRODUCTION)
        assert settings.is_production is True
        assert not hasattr(settings, "secret_key")

    @pytest.mark.parametrize(
        "override,field",
        [
            ({"database_url": "postgresql+asyncpg://u:changeme@db/x"}, "database_url"),
            ({"database_url": "sqlite+aiosqlite:///facturas.db"}, "SQLite"),
            ({"debug": True}, "debug"),
            ({"cors_origins": ["http://localhost:3000"]}, "cors_origins"),
        ],
    )
    def test_rejected_production_settings(self, override, field):
        with pytest.raises(ValidationError) as exc_info:
            Settings(**{**PRODUCTION, **override})
        assert field in str(exc_info.value)

    def test_development_accepts_defaults(self):
        settings = Settings(app_env="development")
        assert settings.is_production is False
        assert settings.verifactu_software_id == "SYS-FACT-001"
