"""Strategy-based provider selection.

A strategy is configuration data: an ordered list of provider names,
best first (SELECTION_STRATEGIES). Selecting filters the registered
providers to those that support the requested capability and returns the
best-ranked one. Providers a strategy does not mention rank last, in
registration order.
"""

import json
import logging
from collections.abc import Callable, Sequence

from chat_gateway.config.settings import get_settings
from chat_gateway.errors import ConfigurationError, NoProviderAvailable
from chat_gateway.models import Capability

logger = logging.getLogger("gateway.audit")


class ProviderSelector:
    """Picks a provider for a capability under a named strategy.

    Args:
        providers: Registered provider names, in registration order.
        supports: Collaborator answering "does provider X support capability Y".
        strategies: Strategy name -> ordered provider names. Defaults to settings.
        default_strategy: Used when select() gets no strategy. Defaults to settings.
    """

    def __init__(
        self,
        providers: Sequence[str],
        supports: Callable[[str, Capability], bool],
        strategies: dict[str, list[str]] | None = None,
        default_strategy: str | None = None,
    ):
        self.providers = list(providers)
        self._supports = supports
        self._strategies = strategies
        self._default_strategy = default_strategy

    def _strategy_order(self, strategy: str | None) -> tuple[str, list[str]]:
        settings = get_settings()
        name = (strategy or self._default_strategy or settings.selection_default_strategy or "").strip().lower()
        if not name:
            raise ConfigurationError("No selection strategy given and no default strategy configured")

        if self._strategies is not None:
            strategies = {k.lower(): v for k, v in self._strategies.items()}
        else:
            try:
                strategies = settings.strategies
            except (json.JSONDecodeError, AttributeError, TypeError) as e:
                raise ConfigurationError(f"SELECTION_STRATEGIES is not a valid JSON object: {e}")

        if name not in strategies:
            raise ConfigurationError(
                f"Unknown selection strategy '{name}'. Known strategies: {', '.join(sorted(strategies))}"
            )
        return name, [p.lower() for p in strategies[name]]

    def _is_supported(self, provider: str, capability: Capability) -> bool:
        try:
            return self._supports(provider, capability)
        except Exception as e:
            logger.warning("Capability check failed", extra={"audit_data": {
                "provider": provider, "capability": capability.value, "error_type": type(e).__name__,
            }})
            return False

    def select(self, capability: Capability, strategy: str | None = None) -> str:
        name, order = self._strategy_order(strategy)

        def rank(provider: str) -> int:
            try:
                return order.index(provider.lower())
            except ValueError:
                return len(order)

        candidates = sorted(self.providers, key=rank)  # stable: ties keep registration order
        for provider in candidates:
            if self._is_supported(provider, capability):
                logger.debug("Provider selected", extra={"audit_data": {
                    "provider": provider, "capability": capability.value, "strategy": name,
                }})
                return provider

        raise NoProviderAvailable(
            f"No available provider supports '{capability.value}' under strategy '{name}'"
        )
