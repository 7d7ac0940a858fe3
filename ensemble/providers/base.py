"""Abstract base for all language model providers."""

from abc import ABC, abstractmethod

from ensemble.models import OracleResponse


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all language model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the catalog id of the model this provider serves (e.g. 'claude-opus')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> OracleResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            system: Optional system instruction (agent persona).
            max_tokens: Output cap; None uses the configured default.
            temperature: Sampling temperature, ignored by models that fix it.

        Returns:
            OracleResponse with content, usage and cost.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...
