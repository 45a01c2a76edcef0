"""Static table of AI providers and the credential snapshot deciding which are usable."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Mapping


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    credential_env: str
    default_model: str
    models: tuple[str, ...]

    def __post_init__(self):
        if self.default_model not in self.models:
            raise ValueError(
                f"default model {self.default_model!r} is not in {self.name}'s model list"
            )


# Declaration order is the fallback order.
DEFAULT_PROVIDERS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        name="openai",
        credential_env="OPENAI_API_KEY",
        default_model="gpt-5",
        models=("gpt-5", "gpt-5-mini", "gpt-4.1", "gpt-4o", "gpt-4o-mini", "o4-mini"),
    ),
    ProviderDescriptor(
        name="anthropic",
        credential_env="ANTHROPIC_API_KEY",
        default_model="claude-sonnet-4-5",
        models=("claude-sonnet-4-5", "claude-opus-4-1", "claude-3-5-haiku-latest"),
    ),
    ProviderDescriptor(
        name="gemini",
        credential_env="GEMINI_API_KEY",
        default_model="gemini-2.5-flash",
        models=("gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash"),
    ),
    ProviderDescriptor(
        name="deepseek",
        credential_env="DEEPSEEK_API_KEY",
        default_model="deepseek-chat",
        models=("deepseek-chat", "deepseek-reasoner"),
    ),
)


class ProviderRegistry:
    """Provider descriptors plus an immutable credential snapshot.

    Credentials are read once, when the registry is built. Changing the
    environment afterwards has no effect until the process restarts, so every
    availability decision within a process lifetime is deterministic.
    """

    def __init__(
        self,
        descriptors: Iterable[ProviderDescriptor],
        credentials: Mapping[str, str | None],
    ):
        self._descriptors: dict[str, ProviderDescriptor] = {}
        for desc in descriptors:
            if desc.name in self._descriptors:
                raise ValueError(f"duplicate provider {desc.name!r}")
            self._descriptors[desc.name] = desc
        self._credentials: dict[str, str] = {}
        for desc in self._descriptors.values():
            value = (credentials.get(desc.credential_env) or "").strip()
            if value:
                self._credentials[desc.name] = value

    @classmethod
    def from_environment(
        cls,
        descriptors: Iterable[ProviderDescriptor] = DEFAULT_PROVIDERS,
        environ: Mapping[str, str] | None = None,
    ) -> "ProviderRegistry":
        return cls(descriptors, dict(os.environ if environ is None else environ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def names(self) -> list[str]:
        return list(self._descriptors)

    def descriptor(self, name: str) -> ProviderDescriptor | None:
        return self._descriptors.get(name)

    def list_available(self) -> list[str]:
        """Usable provider names, in declaration order."""
        return [name for name in self._descriptors if name in self._credentials]

    def is_available(self, name: str) -> bool:
        return name in self._credentials

    def is_model_available(self, provider: str, model: str) -> bool:
        if not self.is_available(provider):
            return False
        return model in self._descriptors[provider].models

    def default_model(self, provider: str) -> str | None:
        if not self.is_available(provider):
            return None
        return self._descriptors[provider].default_model

    def credential(self, provider: str) -> str | None:
        return self._credentials.get(provider)

    def find_provider_for_model(self, model: str) -> str | None:
        for desc in self._descriptors.values():
            if model in desc.models:
                return desc.name
        return None
