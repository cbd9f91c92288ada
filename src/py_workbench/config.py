from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigurationError

ENV_TOKEN = "PY_WORKBENCH_TOKEN"
ENV_DEBUG = "PY_WORKBENCH_DEBUG"
ENV_TIMEOUT = "PY_WORKBENCH_TIMEOUT"
ENV_LOG = "PY_WORKBENCH_LOG"

DEFAULT_TIMEOUT_SECONDS = 30
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _string_env(environ: Mapping[str, str], name: str) -> str | None:
    """Return a stripped environment value, or None when unset or blank.

    Example:
        ```python
        path = _string_env({"PY_WORKBENCH_LOG": " /tmp/w.log "}, "PY_WORKBENCH_LOG")
        ```
    """
    value = environ.get(name, "").strip()
    if not value:
        return None
    return value


def _bool_env(environ: Mapping[str, str], name: str) -> bool:
    """Parse an opt-in boolean flag; anything but a true-ish word is False.

    Example:
        ```python
        enabled = _bool_env({"PY_WORKBENCH_DEBUG": "true"}, "PY_WORKBENCH_DEBUG")
        ```
    """
    value = _string_env(environ, name)
    return value is not None and value.lower() in _TRUE_VALUES


def _timeout_env(environ: Mapping[str, str], name: str) -> int:
    """Parse the evaluation timeout; non-numeric values fall back to the default.

    Example:
        ```python
        seconds = _timeout_env({"PY_WORKBENCH_TIMEOUT": "5"}, "PY_WORKBENCH_TIMEOUT")
        ```
    """
    value = _string_env(environ, name)
    if value is None:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        seconds = int(value)
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS
    if seconds < 0:
        raise ConfigurationError(f"'{name}' must be zero or a positive number of seconds")
    return seconds


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    """Runtime settings for one worker process.

    Example:
        ```python
        config = WorkerConfig(token="secret", timeout_seconds=5)
        ```
    """

    token: str
    debug: bool = False
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    log_destination: str | None = None

    def __post_init__(self) -> None:
        """Validate the token and timeout after dataclass initialization.

        Example:
            ```python
            WorkerConfig(token="secret")
            ```
        """
        if not self.token:
            raise ConfigurationError("Error: token required")
        if self.timeout_seconds < 0:
            raise ConfigurationError("timeout_seconds must be zero or positive")

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "WorkerConfig":
        """Create a config from process environment variables.

        Example:
            ```python
            config = WorkerConfig.from_environment({"PY_WORKBENCH_TOKEN": "secret"})
            ```
        """
        env = os.environ if environ is None else environ
        token = env.get(ENV_TOKEN, "")
        if not token:
            raise ConfigurationError("Error: token required")
        return cls(
            token=token,
            debug=_bool_env(env, ENV_DEBUG),
            timeout_seconds=_timeout_env(env, ENV_TIMEOUT),
            log_destination=_string_env(env, ENV_LOG),
        )

    def to_environment(self) -> dict[str, str]:
        """Render the config as environment variables for a child worker.

        Example:
            ```python
            env = {**os.environ, **config.to_environment()}
            ```
        """
        env = {
            ENV_TOKEN: self.token,
            ENV_DEBUG: "1" if self.debug else "0",
            ENV_TIMEOUT: str(self.timeout_seconds),
        }
        if self.log_destination:
            env[ENV_LOG] = self.log_destination
        return env
