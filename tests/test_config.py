import pytest
from pydantic import ValidationError

from mealledger.app.core.config import Settings


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    settings = Settings(_env_file=None)
    assert settings.timezone == "Asia/Jakarta"
    assert settings.week_starts_on == 1
    assert settings.student_token_prefix == "mbgku"
    assert settings.database_url.startswith("postgresql+asyncpg://")


def test_database_url_override(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./ledger.db")

    settings = Settings(_env_file=None)
    assert settings.database_url == "sqlite+aiosqlite:///./ledger.db"


def test_tzinfo(monkeypatch) -> None:
    monkeypatch.setenv("TIMEZONE", "Asia/Makassar")

    settings = Settings(_env_file=None)
    assert settings.tzinfo.key == "Asia/Makassar"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TIMEZONE", "Mars/Olympus_Mons"),
        ("WEEK_STARTS_ON", "0"),
        ("WEEK_STARTS_ON", "8"),
        ("DB_POOL_SIZE", "0"),
        ("MAX_PAGE_SIZE", "0"),
        ("ACTIVITY_ACTIVE_DAYS", "-1"),
        ("LOG_FORMAT", "xml"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_log_format_normalized(monkeypatch) -> None:
    monkeypatch.setenv("LOG_FORMAT", " JSON ")

    assert Settings(_env_file=None).log_format == "json"


def test_cors_origins_from_json(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", '["http://localhost:5173"]')

    assert Settings(_env_file=None).cors_origins == ["http://localhost:5173"]
