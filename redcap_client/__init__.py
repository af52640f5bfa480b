"""
Client for the REDCap API.

The public API exposes :class:`RedcapClient`, which turns each API operation
into a form payload, POSTs it and parses the reply, and :func:`create_client`,
which builds one from explicit options or ``REDCAP_HOST`` / ``REDCAP_TOKEN``.
See :mod:`redcap_client.client` for the implementation.
"""

from .cache import ResponseCache
from .client import (
    ConfigurationError,
    RedcapClient,
    RedcapError,
    ResponseParseError,
    TransportError,
    create_client,
)
from .configuration import (
    Configuration,
    get_default_configuration,
    reset_default_configuration,
    set_default_configuration,
)

__all__ = [
    "create_client",
    "RedcapClient",
    "Configuration",
    "ResponseCache",
    "RedcapError",
    "ConfigurationError",
    "TransportError",
    "ResponseParseError",
    "get_default_configuration",
    "set_default_configuration",
    "reset_default_configuration",
]
