"""
SLA External Service Integrations
==================================

External services for SLA tracking:
- YAML policy file loading with watchdog hot-reload
- Escalation webhook notifications
- APScheduler for periodic escalation sweeps
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import yaml
import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from civic_sla.config import settings
from civic_sla.core import ConfigurationException
from civic_sla.shared.infrastructure.logging import get_logger
from civic_sla.sla.application import IEscalationNotifier, ISLAConfigProvider
from civic_sla.sla.domain import EscalationOutcome, IssueSnapshot, SLAPolicyConfig

logger = get_logger(__name__)

ESCALATION_LABELS = {1: "Warning", 2: "Urgent", 3: "SLA Breached"}


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class StaticConfigProvider(ISLAConfigProvider):
    """Config provider around a fixed policy, for tests and scripts."""

    def __init__(self, config: Optional[SLAPolicyConfig] = None):
        self._config = config or SLAPolicyConfig()

    def get_config(self) -> SLAPolicyConfig:
        return self._config


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA policy manager with hot-reload support.

    Uses watchdog to monitor the YAML file and swap in a new immutable
    SLAPolicyConfig without restarting the service. A reload that fails
    validation keeps the previous policy.
    """

    def __init__(self):
        self._config: Optional[SLAPolicyConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicyConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: if the file exists but is invalid
        """
        self._path = Path(path)
        try:
            self._config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(f"Invalid SLA policy file {self._path}: {e}") from e
        return self._config

    def _load_from_file(self, path: Path) -> SLAPolicyConfig:
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicyConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAPolicyConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error("Failed to reload SLA policy, keeping previous", extra={"error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA policy reloaded", extra={"sla_hours": new_config.sla_hours})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or inotify is unavailable
        (common in containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA policy file absent, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> SLAPolicyConfig:
        if self._config is None:
            raise RuntimeError("SLA configuration not loaded")
        with self._lock:
            return self._config

    def get_config(self) -> SLAPolicyConfig:
        return self.config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the notification webhook.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookEscalationNotifier(IEscalationNotifier):
    """
    Posts escalation events to a department webhook.

    Handles delivery with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Delivery problems are logged and reported as False, never raised, so a
    dead webhook cannot fail an escalation sweep.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.escalation_webhook_url
        self._timeout = timeout_seconds or settings.escalation_webhook_timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_payload(self, issue: IssueSnapshot, outcome: EscalationOutcome) -> Dict[str, Any]:
        """Webhook payload describing one escalation."""
        return {
            "event": "issue.escalated",
            "issue_id": issue.id,
            "title": issue.title,
            "category": issue.category,
            "city": issue.city,
            "assigned_to": issue.assigned_to,
            "priority": issue.priority,
            "old_level": outcome.old_level,
            "new_level": outcome.new_level,
            "level_label": ESCALATION_LABELS.get(outcome.new_level, "Normal"),
            "progress": round(outcome.progress, 1),
            "time_remaining": outcome.time_remaining_formatted,
            "sla_breached": outcome.breached or issue.sla_breached,
            "sla_deadline": issue.sla_deadline.isoformat() if issue.sla_deadline else None,
        }

    async def notify(self, issue: IssueSnapshot, outcome: EscalationOutcome) -> bool:
        """
        Send an escalation notification.

        Returns:
            True if delivered, False otherwise
        """
        if not self._webhook_url:
            logger.debug("Escalation webhook not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping escalation notification",
                extra={"issue_id": issue.id}
            )
            return False

        payload = self.build_payload(issue, outcome)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Escalation notification sent",
                        extra={"issue_id": issue.id, "new_level": outcome.new_level}
                    )
                    return True

                logger.warning(
                    "Escalation webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Escalation notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "issue_id": issue.id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic escalation sweep.

    ``max_instances=1`` keeps two scheduled sweeps from overlapping.
    """

    def __init__(self, interval_seconds: int = 900):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        if self.interval_seconds <= 0:
            logger.info("Escalation sweep interval is 0, scheduler disabled")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_escalation_sweep",
            name="SLA Escalation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
