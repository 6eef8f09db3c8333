"""GenerationBackend abstract class defining the model provider interface."""

from abc import ABC, abstractmethod

from polaris.types import BackendRequest, BackendResponse


class GenerationBackend(ABC):
    """Abstract base class for text generation providers.

    The orchestrator treats every provider the same way: it sends a
    BackendRequest and expects a BackendResponse or a BackendError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs and result metadata."""
        ...

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Return False when required credentials/endpoints are missing."""
        ...

    @abstractmethod
    async def generate(self, request: BackendRequest) -> BackendResponse:
        """Run one generation.

        Args:
            request: Model identifier, prompts, output budget and temperature.

        Returns:
            The raw text plus token usage.

        Raises:
            BackendError: On provider, transport or timeout failures.
        """
        ...

    async def close(self) -> None:
        """Release HTTP clients. Default is a no-op."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
