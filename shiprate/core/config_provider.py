"""
Configuration providers for zone classification tunables.

The zone resolver never reads settings or the database directly; it is
handed a ConfigProvider and asks it for the metro-city list and the
special-category states. Values only change when reload() is called.

Usage:
    provider = SettingsConfigProvider()
    await provider.reload()
    provider.get_metro_cities()
"""
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, Optional

from sqlalchemy import select

from shiprate.config import Settings, get_settings

logger = logging.getLogger(__name__)

METRO_CITIES_KEY = "metro_cities"
SPECIAL_STATES_KEY = "special_states"


def _upper_set(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    return frozenset(str(v).strip().upper() for v in (values or []) if str(v).strip())


class ConfigProvider(ABC):
    """Source of classification tunables with an explicit reload."""

    @abstractmethod
    async def reload(self) -> None:
        """Re-read the underlying source."""
        pass

    @abstractmethod
    def get_metro_cities(self) -> FrozenSet[str]:
        """Uppercased metro city names."""
        pass

    @abstractmethod
    def get_special_states(self) -> FrozenSet[str]:
        """Uppercased state names always priced as the farthest zone."""
        pass


class StaticConfigProvider(ConfigProvider):
    """Fixed values. reload() is a no-op."""

    def __init__(self, metro_cities: Iterable[str] = (), special_states: Iterable[str] = ()):
        self._metro_cities = _upper_set(metro_cities)
        self._special_states = _upper_set(special_states)

    async def reload(self) -> None:
        return None

    def get_metro_cities(self) -> FrozenSet[str]:
        return self._metro_cities

    def get_special_states(self) -> FrozenSet[str]:
        return self._special_states


class SettingsConfigProvider(ConfigProvider):
    """
    Reads METRO_CITIES / SPECIAL_STATES from settings, or from the JSON file
    named by METRO_CITIES_FILE when it is set.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._metro_cities = _upper_set(self._settings.METRO_CITIES)
        self._special_states = _upper_set(self._settings.SPECIAL_STATES)

    async def reload(self) -> None:
        metro_cities = self._settings.METRO_CITIES
        special_states = self._settings.SPECIAL_STATES

        if self._settings.METRO_CITIES_FILE:
            path = Path(self._settings.METRO_CITIES_FILE)
            data = json.loads(path.read_text(encoding="utf-8"))
            metro_cities = data.get(METRO_CITIES_KEY, metro_cities)
            special_states = data.get(SPECIAL_STATES_KEY, special_states)
            logger.info(f"Loaded zone configuration from {path}")

        self._metro_cities = _upper_set(metro_cities)
        self._special_states = _upper_set(special_states)

    def get_metro_cities(self) -> FrozenSet[str]:
        return self._metro_cities

    def get_special_states(self) -> FrozenSet[str]:
        return self._special_states


class DatabaseConfigProvider(ConfigProvider):
    """
    Reads the system_configurations table. Keys that are absent keep the
    fallback provider's values.
    """

    def __init__(self, session_factory: Callable, fallback: Optional[ConfigProvider] = None):
        self._session_factory = session_factory
        self._fallback = fallback or SettingsConfigProvider()
        self._metro_cities = self._fallback.get_metro_cities()
        self._special_states = self._fallback.get_special_states()

    async def reload(self) -> None:
        from shiprate.models.system_config import SystemConfiguration

        await self._fallback.reload()
        async with self._session_factory() as session:
            result = await session.execute(
                select(SystemConfiguration).where(
                    SystemConfiguration.key.in_([METRO_CITIES_KEY, SPECIAL_STATES_KEY])
                )
            )
            values = {row.key: row.value for row in result.scalars().all()}

        metro_cities = values.get(METRO_CITIES_KEY)
        special_states = values.get(SPECIAL_STATES_KEY)
        self._metro_cities = (
            _upper_set(metro_cities) if metro_cities is not None
            else self._fallback.get_metro_cities()
        )
        self._special_states = (
            _upper_set(special_states) if special_states is not None
            else self._fallback.get_special_states()
        )
        logger.info(
            f"Zone configuration reloaded from database: "
            f"{len(self._metro_cities)} metro cities, {len(self._special_states)} special states"
        )

    def get_metro_cities(self) -> FrozenSet[str]:
        return self._metro_cities

    def get_special_states(self) -> FrozenSet[str]:
        return self._special_states


def build_config_provider(session_factory: Callable, settings: Optional[Settings] = None) -> ConfigProvider:
    """Pick the provider named by CONFIG_SOURCE."""
    settings = settings or get_settings()
    fallback = SettingsConfigProvider(settings)
    if settings.CONFIG_SOURCE.lower() == "database":
        return DatabaseConfigProvider(session_factory, fallback=fallback)
    return fallback
