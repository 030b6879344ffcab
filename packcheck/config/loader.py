from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader.

Responsibilities:
- Load YAML config (default config/packcheck.yml)
- Validate against the bundled JSON schema (schema.json next to this module)
- Apply defaults (timezone=UTC if missing; it sets the export file date)
- Let environment variables (.env already loaded by the CLI) win over YAML
  for connection settings
"""

SCHEMA_PATH = Path(__file__).with_name("schema.json")
DEFAULT_CONFIG_PATH = Path("config/packcheck.yml")

DEFAULT_EXPORT_LABEL = "検証データ"
DEFAULT_PAGE_SIZE = 20


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    def resolve_dsn(self) -> str:
        """Build the libpq DSN.

        Priority: DATABASE_URL / PGDSN, then configured dsn, then the
        individual PG* variables falling back to the YAML values.
        """
        dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or self.dsn
        if dsn:
            return dsn
        host = os.getenv("PGHOST", self.host or "localhost")
        port = os.getenv("PGPORT", str(self.port) if self.port else "5432")
        user = os.getenv("PGUSER", self.user or "postgres")
        password = os.getenv("PGPASSWORD", self.password or "")
        database = os.getenv("PGDATABASE", self.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"
        return dsn


@dataclass(frozen=True)
class StorageConfig:
    url: str | None = None
    bucket: str = "order-images"
    api_key: str | None = None
    timeout: int = 30

    def resolved(self) -> StorageConfig:
        """Copy with STORAGE_URL / STORAGE_API_KEY applied."""
        return StorageConfig(
            url=os.getenv("STORAGE_URL") or self.url,
            bucket=self.bucket,
            api_key=os.getenv("STORAGE_API_KEY") or self.api_key,
            timeout=self.timeout,
        )


@dataclass(frozen=True)
class ExportConfig:
    label: str = DEFAULT_EXPORT_LABEL
    sheet_name: str = DEFAULT_EXPORT_LABEL
    output_directory: str = "./exports"


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    page_size: int = DEFAULT_PAGE_SIZE
    column_aliases: dict[str, str] = field(default_factory=dict)
    settings_path: str = ".packcheck/settings.json"
    timezone: str = "UTC"


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing/invalid, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    storage_raw = data.get("storage") or {}
    export_raw = data.get("export") or {}
    admin_raw = data.get("admin") or {}

    tz = data.get("timezone", "UTC")
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {tz}") from e

    label = export_raw.get("label", DEFAULT_EXPORT_LABEL)
    return AppConfig(
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
        storage=StorageConfig(
            url=storage_raw.get("url"),
            bucket=storage_raw.get("bucket", "order-images"),
            api_key=storage_raw.get("api_key"),
            timeout=storage_raw.get("timeout", 30),
        ),
        export=ExportConfig(
            label=label,
            sheet_name=export_raw.get("sheet_name", label),
            output_directory=export_raw.get("output_directory", "./exports"),
        ),
        page_size=admin_raw.get("page_size", DEFAULT_PAGE_SIZE),
        column_aliases=dict(data.get("column_aliases") or {}),
        settings_path=data.get("settings_path", ".packcheck/settings.json"),
        timezone=tz,
    )
