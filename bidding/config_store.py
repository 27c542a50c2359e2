"""
Purpose: Versioned storage of ScoringConfigs with an active pointer per category.
What it does:
- create(...)              -> store version 1 of a new named config
- create_new_version(...)  -> immutable copy with changes, version + 1, inactive
- clone(...)               -> copy under a new name, version 1
- activate / deactivate    -> swap the per-category pointer atomically
- active_for(category)     -> the config the evaluator must use

Rule: A config is validated before anything is stored. Stored versions are
never edited, so a reader always sees a whole config.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple, Union

from common.exceptions import ConfigConflict, ConfigNotFound, NoActiveConfig
from orders.models import ServiceCategory
from .policy import ScoringConfig, default_configs

logger = logging.getLogger(__name__)

ConfigKey = Tuple[str, int]


class ScoringConfigStore:
    def __init__(self, configs: Iterable[ScoringConfig] = ()):
        self._lock = threading.Lock()
        self._versions: Dict[str, List[ScoringConfig]] = {}
        self._active: Dict[ServiceCategory, ConfigKey] = {}
        for config in configs:
            self.create(config)

    # --- writes ---

    def create(self, config: ScoringConfig, *, activate: bool = False) -> ScoringConfig:
        config = replace(config, version=1)
        config.validate()
        with self._lock:
            if config.name in self._versions:
                raise ConfigConflict(f"Config {config.name} already exists", detail={"name": config.name})
            self._versions[config.name] = [config]
            if activate:
                self._point_at(config)
        logger.info("Scoring config %s v1 created", config.name)
        return config

    def create_new_version(self, name: str, **changes) -> ScoringConfig:
        changes.pop("name", None)
        changes.pop("version", None)
        with self._lock:
            versions = self._history_locked(name)
            latest = versions[-1]
            config = replace(latest, version=latest.version + 1, **changes)
            config.validate()
            versions.append(config)
        logger.info("Scoring config %s v%d created", name, config.version)
        return config

    def clone(self, name: str, new_name: str, *, version: Optional[int] = None, **changes) -> ScoringConfig:
        source = self.get(name, version)
        changes.pop("version", None)
        return self.create(replace(source, name=new_name, **changes))

    def activate(self, name: str, version: Optional[int] = None) -> ScoringConfig:
        with self._lock:
            config = self._get_locked(name, version)
            self._point_at(config)
        logger.info(
            "Scoring config %s v%d active for %s",
            config.name,
            config.version,
            ", ".join(category.value for category in config.categories()),
        )
        return config

    def deactivate(self, category: Union[str, ServiceCategory]) -> Optional[ScoringConfig]:
        category = ServiceCategory(category)
        with self._lock:
            key = self._active.pop(category, None)
            if key is None:
                return None
            return self._get_locked(*key)

    def reset_to_defaults(self) -> None:
        """
        Drop everything and reinstall the shipped configs, with the balanced
        pharmacy and lab defaults active.
        """
        defaults = default_configs()
        with self._lock:
            self._versions = {config.name: [config] for config in defaults}
            self._active = {}
            self._point_at(self._versions["default_pharmacy"][0])
            self._point_at(self._versions["default_lab"][0])
        logger.info("Scoring configs reset to defaults")

    # --- reads ---

    def active_for(self, category: Union[str, ServiceCategory]) -> ScoringConfig:
        category = ServiceCategory(category)
        with self._lock:
            key = self._active.get(category)
            if key is None:
                raise NoActiveConfig(
                    f"No active scoring config for {category.value}", detail={"category": category.value}
                )
            return self._get_locked(*key)

    def get(self, name: str, version: Optional[int] = None) -> ScoringConfig:
        with self._lock:
            return self._get_locked(name, version)

    def history(self, name: str) -> List[ScoringConfig]:
        with self._lock:
            return list(self._history_locked(name))

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._versions)

    def is_active(self, name: str, version: Optional[int] = None) -> bool:
        with self._lock:
            return any(
                key[0] == name and (version is None or key[1] == version)
                for key in self._active.values()
            )

    # --- internals (caller holds self._lock) ---

    def _history_locked(self, name: str) -> List[ScoringConfig]:
        versions = self._versions.get(name)
        if not versions:
            raise ConfigNotFound(f"Config {name} does not exist", detail={"name": name})
        return versions

    def _get_locked(self, name: str, version: Optional[int] = None) -> ScoringConfig:
        versions = self._history_locked(name)
        if version is None:
            return versions[-1]
        for config in versions:
            if config.version == version:
                return config
        raise ConfigNotFound(f"Config {name} has no version {version}", detail={"name": name, "version": version})

    def _point_at(self, config: ScoringConfig) -> None:
        for category in config.categories():
            self._active[category] = (config.name, config.version)
