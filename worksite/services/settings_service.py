"""
Runtime settings service.

Settings live in the app_settings table and are read through a TTLCache
supplied by the caller. Writes go to the database and invalidate the cache.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from worksite.models import db
from worksite.models.settings import AppSetting
from worksite.services.cache_service import TTLCache

logger = logging.getLogger(__name__)

_ALL_KEY = "all"

# Well-known keys
REQUIRED_CATEGORIES_KEY = "resource.required_categories"
DEFAULT_SPECIALTY_KEY = "resource.default_specialty"


class SettingsService:
    """Cached accessor for AppSetting rows."""

    def __init__(self, cache: TTLCache):
        self.cache = cache

    def _load_all(self) -> dict[str, Any]:
        cached = self.cache.get(_ALL_KEY)
        if cached is not None:
            return cached

        rows = db.session.execute(select(AppSetting)).scalars().all()
        settings = {row.key: row.value for row in rows}
        self.cache.set(_ALL_KEY, settings)
        logger.debug("Loaded %d settings from app_settings", len(settings))
        return settings

    def get(self, key: str, default: Any = None) -> Any:
        settings = self._load_all()
        if key in settings and settings[key] is not None:
            return settings[key]
        return default

    def get_many(self, keys: list[str]) -> dict[str, Any]:
        settings = self._load_all()
        return {k: settings.get(k) for k in keys}

    def set(self, key: str, value: Any, category: str | None = None, description: str | None = None) -> dict:
        """Create or update a setting, then invalidate the cache."""
        row = db.session.execute(
            select(AppSetting).where(AppSetting.key == key)
        ).scalar_one_or_none()
        if row is None:
            row = AppSetting(key=key)
            db.session.add(row)
        row.value = value
        if category is not None:
            row.category = category
        if description is not None:
            row.description = description
        db.session.commit()
        self.invalidate()
        logger.info("Setting updated key=%s", key)
        return row.to_dict()

    def invalidate(self) -> None:
        self.cache.clear()
