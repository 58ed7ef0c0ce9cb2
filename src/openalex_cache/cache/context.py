from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List

from openalex_cache.cache.models import FileObservation
from openalex_cache.cache.urls import DEFAULT_API_BASE_URL
from openalex_cache.config.models import AppConfig

DEBOUNCE_SECONDS = 0.1
MAX_AGE = timedelta(hours=24)


@dataclass(slots=True)
class CacheContext:
    """
    Shared state for one cache root, built once and handed to every cache component.

    ``pending_observations`` holds the URLs written since the last index update, keyed by
    resolved directory and then by file stem.
    """

    root_path: Path
    verbose: bool = False
    dry_run: bool = False
    api_base_url: str = DEFAULT_API_BASE_URL
    max_age: timedelta = MAX_AGE
    debounce_seconds: float = DEBOUNCE_SECONDS
    pending_observations: Dict[Path, Dict[str, List[FileObservation]]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.root_path = Path(self.root_path).resolve()
        self.api_base_url = self.api_base_url.rstrip("/")

    @classmethod
    def from_config(cls, config: AppConfig) -> CacheContext:
        return cls(
            root_path=Path(config.cache.root_path),
            verbose=config.cache.verbose,
            dry_run=config.app.dry_run,
            api_base_url=config.cache.api_base_url,
        )

    def log_step(self, logger: logging.Logger, message: str, *args: object) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message, *args)

    def record_observation(self, directory: Path, stem: str, observation: FileObservation) -> None:
        self.pending_observations.setdefault(directory, {}).setdefault(stem, []).append(observation)

    def take_observations(self, directory: Path) -> Dict[str, List[FileObservation]]:
        return self.pending_observations.pop(directory, {})
