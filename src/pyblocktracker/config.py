"""Tracker configuration for pyblocktracker."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyblocktracker.exceptions import BlockTrackerConfigError

#: Default polling interval in seconds.
DEFAULT_POLLING_INTERVAL: float = 20.0


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise BlockTrackerConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Block tracker configuration.

    All durations are in seconds.

    Parameters
    ----------
    polling_interval : float
        Time to wait after a successful iteration before fetching again.
        Defaults to 20 seconds.
    retry_timeout : float or None
        Time to wait after a failed fetch before retrying.  ``None`` means
        one tenth of ``polling_interval``.
    eviction_duration : float or None
        How long the last tracked value stays cached after the poll loop
        stops.  ``None`` means "same as ``polling_interval``"; ``0``
        disables eviction entirely.
    keep_process_alive : bool
        Whether a stopped poll loop may keep its pending sleep on the event
        loop until it elapses.  With ``False`` the sleep is woken as soon as
        the loop stops so no tracker timer outlives the last listener.
    bypass_cache_on_fetch : bool
        Ask the provider to skip any cache layer on every fetch.
    """

    polling_interval: float = DEFAULT_POLLING_INTERVAL
    retry_timeout: float | None = None
    eviction_duration: float | None = None
    keep_process_alive: bool = True
    bypass_cache_on_fetch: bool = False

    def __post_init__(self) -> None:
        if self.polling_interval <= 0:
            raise BlockTrackerConfigError(f"polling_interval must be positive, got {self.polling_interval}")
        if self.retry_timeout is not None and self.retry_timeout <= 0:
            raise BlockTrackerConfigError(f"retry_timeout must be positive, got {self.retry_timeout}")
        if self.eviction_duration is not None and self.eviction_duration < 0:
            raise BlockTrackerConfigError(f"eviction_duration must not be negative, got {self.eviction_duration}")

    @property
    def effective_retry_timeout(self) -> float:
        """Retry delay with the ``polling_interval / 10`` fallback applied."""
        if self.retry_timeout is None:
            return self.polling_interval / 10
        return self.retry_timeout

    @property
    def effective_eviction_duration(self) -> float | None:
        """Eviction delay, or ``None`` when eviction is disabled."""
        if self.eviction_duration is None:
            return self.polling_interval
        if self.eviction_duration == 0:
            return None
        return self.eviction_duration

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads the optional ``BLOCKTRACKER_*`` variables.  Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_DURATION_MAP = {
            "BLOCKTRACKER_POLLING_INTERVAL": "polling_interval",
            "BLOCKTRACKER_RETRY_TIMEOUT": "retry_timeout",
            "BLOCKTRACKER_EVICTION_DURATION": "eviction_duration",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_DURATION_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        if "keep_process_alive" not in overrides:
            config_kwargs["keep_process_alive"] = _env_bool(env.get("BLOCKTRACKER_KEEP_PROCESS_ALIVE"), True)

        if "bypass_cache_on_fetch" not in overrides:
            config_kwargs["bypass_cache_on_fetch"] = _env_bool(env.get("BLOCKTRACKER_BYPASS_CACHE"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
