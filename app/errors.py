"""Error taxonomy shared by the AI router, reminder engine and chat handlers."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for errors that are turned into user-facing replies."""


class NoProviderAvailable(AssistantError):
    """No AI provider has a credential configured."""

    def __init__(self) -> None:
        super().__init__("No AI providers available. Check your API keys.")


class ProviderError(AssistantError):
    """A single provider call failed."""

    def __init__(self, provider: str, cause: BaseException | str):
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider} request failed: {cause}")


class PrimaryProviderUnavailable(AssistantError):
    """An auxiliary operation needs the primary provider, which has no credential."""

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(f"{provider} is not available for {operation}")
