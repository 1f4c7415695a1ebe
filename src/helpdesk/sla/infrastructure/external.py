"""
SLA Runtime Integrations
=========================

Process-level collaborators of the SLA engine:
- ``SLAConfigManager``: loads ``sla_config.yaml`` and hot-reloads it via watchdog
- ``SLAScheduler``: APScheduler interval job driving the breach sweep
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain.value_objects import SLAConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Reloads the SLA config when its file is written or replaced."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        super().__init__()
        self.config_manager = config_manager
        self.config_path = config_path.resolve()

    def _is_config_file(self, event: FileSystemEvent) -> bool:
        return not event.is_directory and Path(event.src_path).resolve() == self.config_path

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._is_config_file(event):
            logger.info("SLA config file changed", extra={"path": str(self.config_path)})
            self.config_manager.reload()

    def on_created(self, event: FileSystemEvent) -> None:
        # Editors that save by rename show up as a create
        if self._is_config_file(event):
            self.config_manager.reload()


def read_sla_config(path: Path) -> SLAConfig:
    """
    Parse an SLA config file.

    A missing file yields the built-in defaults; anything unreadable or
    invalid raises ``ConfigurationException``.
    """
    if not path.exists():
        logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
        return SLAConfig()

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationException(f"Cannot read SLA config {path}", {"error": str(e)}) from e

    if not isinstance(data, dict):
        raise ConfigurationException(f"SLA config {path} must be a mapping")

    try:
        config = SLAConfig(**data)
    except ValidationError as e:
        raise ConfigurationException(f"Invalid SLA config {path}", {"error": str(e)}) from e

    if config.business_hours_only:
        logger.warning("business_hours_only is not supported; deadlines use wall-clock minutes")
    return config


class SLAConfigManager:
    """
    Holds the current ``SLAConfig`` and swaps it on file changes.

    Readers on the event loop and the watchdog thread share the config
    through a lock. A reload that fails keeps the previous configuration.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer: Optional[Observer] = None

    @property
    def config(self) -> SLAConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def load(self, path: Path) -> SLAConfig:
        """Initial load. Errors propagate so a broken file stops startup."""
        self._path = Path(path)
        config = read_sla_config(self._path)
        self._swap(config)
        logger.info(
            "SLA configuration loaded",
            extra={"path": str(self._path), "default_policies": len(config.default_policies)}
        )
        return config

    def reload(self) -> bool:
        if self._path is None:
            return False

        try:
            config = read_sla_config(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA config, keeping previous configuration",
                extra={"path": str(self._path), **e.details}
            )
            return False

        self._swap(config)
        logger.info("SLA configuration reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Watch the config file's directory for changes.

        Nothing to watch when the file is absent. Where inotify is unavailable
        (some containers) the config stays static.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")
        if not self._path.exists():
            logger.info("SLA config file absent, not watching", extra={"path": str(self._path)})
            return

        observer = Observer()
        try:
            observer.schedule(ConfigFileHandler(self, self._path), str(self._path.resolve().parent), recursive=False)
            observer.start()
        except OSError as e:
            logger.warning("File watching not available, using static SLA config", extra={"error": str(e)})
            return

        self._observer = observer
        logger.info("Watching SLA config file", extra={"path": str(self._path)})

    def stop_watching(self) -> None:
        """Safe to call when not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def _swap(self, config: SLAConfig) -> None:
        with self._lock:
            self._config = config


class SLAScheduler:
    """
    Runs the breach sweep every ``interval_seconds`` on the event loop.

    One instance of the job at a time; missed runs are coalesced.
    """

    JOB_ID = "sla_breach_sweep"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def job(self) -> Optional[Job]:
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(self.JOB_ID)

    @property
    def next_run_at(self) -> Optional[datetime]:
        job = self.job
        return job.next_run_time if job else None

    async def start(self, sweep: Callable[[], Awaitable[None]]) -> None:
        if self._scheduler is not None:
            logger.warning("SLA scheduler already running")
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            sweep,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA breach sweep",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("SLA scheduler stopped")
