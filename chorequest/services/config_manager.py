from copy import deepcopy
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from datetime import datetime

from chorequest.config import Config
from chorequest.database.models.game_config import GameConfig, GLOBAL_SCOPE
from chorequest.game_rules import DEFAULT_RULES, EngineConfig
from chorequest.services.logger import get_logger
from chorequest.utils.timezone_utils import utc_now_naive

logger = get_logger(__name__)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


class ConfigManager:
    """
    Per-tenant balance configuration with database backing and caching.

    Layers, lowest first: built-in DEFAULT_RULES, rows in the "global" scope,
    rows scoped to one family. Each family's merged view is cached separately
    with a TTL, and engine_config() turns it into an immutable EngineConfig for
    injection into the services. Instances hold no shared class state, so
    separate managers (tenants, environments, tests) never cross-contaminate.

    Usage:
        >>> manager = ConfigManager()
        >>> await manager.load(session, family_id)
        >>> manager.get("streak.threshold", family_id=family_id)
        5
        >>> await manager.set(session, "class_bonuses.MAGE.xp", 1.3, "admin")
    """

    def __init__(
        self,
        cache_ttl: Optional[int] = None,
        defaults: Optional[Dict[str, Any]] = None
    ):
        if defaults is None:
            defaults = {**DEFAULT_RULES, "default_timezone": Config.DEFAULT_TIMEZONE}
        self._defaults: Dict[str, Any] = deepcopy(defaults)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._cache_timestamps: Dict[str, datetime] = {}
        self._cache_ttl = cache_ttl if cache_ttl is not None else Config.CONFIG_CACHE_TTL

    @staticmethod
    def _scope_key(family_id: Optional[str]) -> str:
        return family_id or GLOBAL_SCOPE

    def _is_fresh(self, scope: str) -> bool:
        loaded_at = self._cache_timestamps.get(scope)
        if loaded_at is None:
            return False
        return (utc_now_naive() - loaded_at).total_seconds() <= self._cache_ttl

    async def load(self, session: AsyncSession, family_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Load and cache the merged configuration for a family (or globally).

        Args:
            session: Database session
            family_id: Family whose overrides apply; None for global only

        Returns:
            Merged configuration dictionary
        """
        scopes = [GLOBAL_SCOPE] if family_id is None else [GLOBAL_SCOPE, family_id]
        result = await session.execute(
            select(GameConfig).where(or_(*(GameConfig.scope == scope for scope in scopes)))
        )
        rows = result.scalars().all()

        merged = deepcopy(self._defaults)
        # Global rows first so family rows win.
        for row in sorted(rows, key=lambda r: r.scope != GLOBAL_SCOPE):
            if isinstance(row.config_value, dict) and isinstance(merged.get(row.config_key), dict):
                merged[row.config_key] = _deep_merge(merged[row.config_key], row.config_value)
            else:
                merged[row.config_key] = deepcopy(row.config_value)

        scope = self._scope_key(family_id)
        self._cache[scope] = merged
        self._cache_timestamps[scope] = utc_now_naive()
        logger.debug(f"ConfigManager loaded scope={scope} ({len(rows)} overrides)")
        return merged

    def get(self, key: str, default: Any = None, family_id: Optional[str] = None) -> Any:
        """
        Get configuration value by hierarchical key.

        Supports dot notation for nested values (e.g., 'streak.threshold').
        Falls back to built-in defaults if the scope is not loaded or has expired.

        Args:
            key: Configuration key (dot-separated for nested values)
            default: Default value if key not found
            family_id: Family scope to read

        Returns:
            Configuration value or default

        Example:
            >>> manager.get("difficulty_multipliers.HARD")
            2.0
        """
        scope = self._scope_key(family_id)
        if self._is_fresh(scope):
            source = self._cache[scope]
        else:
            if scope in self._cache:
                logger.debug(f"ConfigManager cache expired for scope={scope}, using defaults")
                self._cache.pop(scope, None)
                self._cache_timestamps.pop(scope, None)
            source = self._defaults

        value: Any = source
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]

        return value if value is not None else default

    @staticmethod
    def _set_nested_value(data: Dict, keys: list, value: Any) -> Dict:
        """Set value in nested dictionary structure."""
        if len(keys) == 1:
            data[keys[0]] = value
            return data

        if not isinstance(data.get(keys[0]), dict):
            data[keys[0]] = {}

        data[keys[0]] = ConfigManager._set_nested_value(data[keys[0]], keys[1:], value)
        return data

    async def set(
        self,
        session: AsyncSession,
        key: str,
        value: Any,
        modified_by: str = "system",
        family_id: Optional[str] = None
    ) -> None:
        """
        Store an override in the caller's transaction and invalidate the cache.

        Supports dot notation for nested values. The change is validated by
        building an EngineConfig before it is written.

        Args:
            session: Database session (transaction managed by caller)
            key: Configuration key (dot-separated for nested values)
            value: New value
            modified_by: User/system making the change
            family_id: Family scope; None writes a global override

        Raises:
            ConfigurationError: If the resulting configuration is invalid

        Example:
            >>> await manager.set(session, "streak.max_bonus", 0.1, "admin", family_id)
        """
        keys = key.split(".")
        top_level_key = keys[0]
        scope = self._scope_key(family_id)

        result = await session.execute(
            select(GameConfig).where(
                GameConfig.scope == scope,
                GameConfig.config_key == top_level_key
            )
        )
        config = result.scalar_one_or_none()

        if len(keys) > 1:
            config_data = deepcopy(config.config_value) if config and isinstance(config.config_value, dict) else {}
            final_value = self._set_nested_value(config_data, keys[1:], value)
        else:
            final_value = value

        current = await self.load(session, family_id)
        candidate = dict(current)
        if isinstance(final_value, dict) and isinstance(candidate.get(top_level_key), dict):
            candidate[top_level_key] = _deep_merge(candidate[top_level_key], final_value)
        else:
            candidate[top_level_key] = final_value
        EngineConfig.from_dict(candidate)

        if config:
            config.config_value = final_value
            config.modified_by = modified_by
            config.last_modified = utc_now_naive()
        else:
            config = GameConfig(
                scope=scope,
                config_key=top_level_key,
                config_value=final_value,
                modified_by=modified_by
            )
            session.add(config)

        await session.flush()

        if scope == GLOBAL_SCOPE:
            self.clear_cache()
        else:
            self._cache.pop(scope, None)
            self._cache_timestamps.pop(scope, None)

        logger.info(f"ConfigManager updated: scope={scope} {key} by {modified_by}")

    async def engine_config(
        self,
        session: AsyncSession,
        family_id: Optional[str] = None
    ) -> EngineConfig:
        """
        Build the immutable balance tables for a family.

        Raises:
            ConfigurationError: If stored overrides are malformed
        """
        scope = self._scope_key(family_id)
        if self._is_fresh(scope):
            data = self._cache[scope]
        else:
            data = await self.load(session, family_id)
        return EngineConfig.from_dict(data)

    def clear_cache(self) -> None:
        """Clear in-memory cache for every scope."""
        self._cache.clear()
        self._cache_timestamps.clear()
