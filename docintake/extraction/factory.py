"""Factory for building the extraction fallback chain from configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

The chain itself is data (an ordered list of ProviderSpec), so changing the
order or adding an engine is a configuration change.
"""

import logging
from dataclasses import dataclass

from docintake.extraction.base import ExtractionProvider
from docintake.extraction.ollama_provider import OllamaExtractionProvider
from docintake.extraction.openai_provider import OpenAIExtractionProvider
from docintake.extraction.tesseract_provider import TesseractExtractionProvider
from docintake.extraction.vision_provider import VisionExtractionProvider
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    """One step of the fallback chain."""

    provider: ExtractionProvider
    timeout: float

    @property
    def name(self) -> str:
        return self.provider.provider_name


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "vision": VisionExtractionProvider,
        "ollama": OllamaExtractionProvider,
        "tesseract": TesseractExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (as used in Settings.provider_order)
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names."""
        return list(cls._providers.keys())


def create_provider_chain(settings: Settings) -> list[ProviderSpec]:
    """Build the ordered fallback chain from settings.provider_order.

    Unconfigured providers stay in the chain (they fail fast with
    ProviderUnavailable at call time) so that configuration can be fixed
    without a restart of the chain definition; a warning is logged.

    Args:
        settings: Application settings

    Returns:
        Ordered list of ProviderSpec

    Raises:
        ValueError: If a configured provider name is unknown or the order is empty

    Example:
        >>> settings = Settings(provider_order=["openai", "tesseract"])
        >>> [spec.name for spec in create_provider_chain(settings)]
        ['openai', 'tesseract']
    """
    if not settings.provider_order:
        raise ValueError("provider_order must name at least one extraction provider")

    chain = []
    for name in settings.provider_order:
        provider = ProviderRegistry.get_provider_class(name)(settings)
        if not provider.is_available():
            logger.warning(
                f"Extraction provider '{name}' is not fully available. "
                f"Check configuration (e.g., API keys, binaries)."
            )
        chain.append(ProviderSpec(provider=provider, timeout=settings.timeout_for(name)))

    logger.info(f"Created extraction chain: {[spec.name for spec in chain]}")
    return chain
