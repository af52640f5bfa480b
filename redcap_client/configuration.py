"""
Connection settings for :class:`redcap_client.client.RedcapClient`.

A :class:`Configuration` is built once and handed to a client; the client never
mutates it.  A process-wide default is kept for callers that do not pass one
explicitly, built lazily from ``REDCAP_HOST`` / ``REDCAP_TOKEN``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from dotenv import load_dotenv


DEFAULT_FORMAT = "json"
HOST_ENV = "REDCAP_HOST"
TOKEN_ENV = "REDCAP_TOKEN"
FORMAT_ENV = "REDCAP_FORMAT"
OPTION_KEYS = ("host", "token", "format", "logger", "log_level", "timeout")


def _default_logger() -> logging.Logger:
    return logging.getLogger("redcap_client")


@dataclass(frozen=True)
class Configuration:
    host: Optional[str] = None
    token: Optional[str] = None
    format: str = DEFAULT_FORMAT
    logger: logging.Logger = field(default_factory=_default_logger, compare=False)
    log_level: Optional[Union[int, str]] = None
    timeout: Optional[float] = None

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "Configuration":
        """
        Build a configuration from a mapping of options.

        Recognized keys are ``host``, ``token``, ``format``, ``logger``,
        ``log_level`` and ``timeout``; anything else is ignored.  Values are not
        validated, so an empty host or token only shows up once the server
        rejects the request.
        """

        options = dict(options or {})
        kwargs = {key: options[key] for key in OPTION_KEYS if key in options}
        if not kwargs.get("format"):
            kwargs["format"] = DEFAULT_FORMAT
        if kwargs.get("logger") is None:
            kwargs.pop("logger", None)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Configuration":
        """Read host and token from the environment, loading ``.env`` first."""

        if environ is None:
            load_dotenv()
            environ = os.environ
        return cls.from_options(
            {
                "host": environ.get(HOST_ENV),
                "token": environ.get(TOKEN_ENV),
                "format": environ.get(FORMAT_ENV),
            }
        )

    @property
    def resolved_log_level(self) -> int:
        level = self.log_level
        if level is None:
            return logging.DEBUG
        if isinstance(level, str):
            resolved = logging.getLevelName(level.upper())
            return resolved if isinstance(resolved, int) else logging.DEBUG
        return int(level)


_UNSET = object()
_DEFAULT_CONFIGURATION: Any = _UNSET


def get_default_configuration() -> Optional[Configuration]:
    """
    Return the process default configuration.

    Built from the environment on first use.  Returns ``None`` once the default
    has been explicitly cleared with ``set_default_configuration(None)``.
    """

    global _DEFAULT_CONFIGURATION
    if _DEFAULT_CONFIGURATION is _UNSET:
        _DEFAULT_CONFIGURATION = Configuration.from_env()
    return _DEFAULT_CONFIGURATION


def set_default_configuration(
    options: Union[Configuration, Mapping[str, Any], None],
) -> Optional[Configuration]:
    """Replace the process default; ``None`` leaves the process unconfigured."""

    global _DEFAULT_CONFIGURATION
    if options is None or isinstance(options, Configuration):
        _DEFAULT_CONFIGURATION = options
    else:
        _DEFAULT_CONFIGURATION = Configuration.from_options(options)
    return _DEFAULT_CONFIGURATION


def reset_default_configuration() -> None:
    global _DEFAULT_CONFIGURATION
    _DEFAULT_CONFIGURATION = _UNSET
