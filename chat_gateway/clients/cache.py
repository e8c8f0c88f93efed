"""Lazily built, fingerprinted vendor client cache.

Vendor clients are expensive to build and cheap to reuse, so each
ChatModel keeps one and rebuilds it only when the parts of its config
that shape the client change. The fingerprint never contains the API
key itself, only a length marker.
"""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from chat_gateway.config.models import ProviderConfig

ClientT = TypeVar("ClientT")

logger = logging.getLogger("gateway.audit")


def secret_marker(secret: str | None) -> str:
    """Length-only marker safe for fingerprints and logs."""
    return f"len:{len(secret)}" if secret else "empty"


def config_fingerprint(config: ProviderConfig) -> str:
    return f"{secret_marker(config.api_key)}|{config.endpoint or ''}|{config.is_managed_endpoint}"


class ClientCache(Generic[ClientT]):
    """Builds a client with `factory` and reuses it while the fingerprint holds.

    Readers take no lock when the published fingerprint matches; a stale
    fingerprint is re-checked under the lock so each transition builds at
    most one client.
    """

    def __init__(self, factory: Callable[[ProviderConfig], ClientT], name: str = ""):
        self._factory = factory
        self._name = name
        self._lock = threading.Lock()
        # (fingerprint, client), replaced as a whole, never mutated
        self._entry: tuple[str, ClientT] | None = None

    def get_or_create(self, config: ProviderConfig) -> ClientT:
        fingerprint = config_fingerprint(config)

        entry = self._entry
        if entry is not None and entry[0] == fingerprint:
            return entry[1]

        with self._lock:
            entry = self._entry
            if entry is not None and entry[0] == fingerprint:
                return entry[1]

            client = self._factory(config)
            self._entry = (fingerprint, client)
            logger.info(
                "Vendor client created",
                extra={"audit_data": {
                    "provider": self._name,
                    "fingerprint": fingerprint,
                    "reason": "first use" if entry is None else "configuration change",
                }},
            )
        return client

    def clear(self) -> ClientT | None:
        """Drop the cached client and return it so the caller can close it."""
        with self._lock:
            entry, self._entry = self._entry, None
        return entry[1] if entry else None
