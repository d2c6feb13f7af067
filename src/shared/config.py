"""TOML configuration for the tile service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import tomlkit

from domain.models import ServiceSettings
from shared.constants import CONFIG_SECTION

logger = logging.getLogger(__name__)


def load_settings(path: str | Path) -> ServiceSettings:
    """
    Загрузка и валидация TOML -> ServiceSettings.

    Ключи читаются либо с верхнего уровня файла, либо из таблицы
    ``[tilekeeper]``, если она есть.
    """
    path = Path(path)
    if not path.exists():
        msg = f'Config file not found: {path}'
        raise FileNotFoundError(msg)
    data: dict[str, Any] = tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()
    section = data.get(CONFIG_SECTION)
    if isinstance(section, dict):
        data = section
    settings = ServiceSettings.model_validate(data)
    logger.info('Loaded settings from %s', path)
    return settings


def save_settings(path: str | Path, settings: ServiceSettings) -> Path:
    """Сохранение настроек в TOML (без атомарности и бэкапов)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # в TOML нет null: незаданные поля просто не пишем
    data = settings.model_dump(exclude_none=True)
    doc = tomlkit.document()
    table = tomlkit.table()
    for key, value in data.items():
        table.add(key, value)
    doc.add(CONFIG_SECTION, table)
    path.write_text(tomlkit.dumps(doc), encoding='utf-8')
    return path


def resolve_settings(
    config_path: str | Path | None = None, **overrides: Any
) -> ServiceSettings:
    """Settings from an optional file with non-None overrides applied on top."""
    base = load_settings(config_path) if config_path else ServiceSettings()
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return base
    return ServiceSettings.model_validate({**base.model_dump(), **updates})
