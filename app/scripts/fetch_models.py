"""Print the models each configured AI provider currently serves.

    python -m app.scripts.fetch_models
"""

from __future__ import annotations

import asyncio
import logging
import os

from app.context import build_adapters
from app.services.ai.registry import DEFAULT_PROVIDERS, ProviderRegistry
from config import settings


async def main() -> dict[str, list[str]]:
    registry = ProviderRegistry.from_environment(DEFAULT_PROVIDERS, os.environ)
    adapters = build_adapters(registry)
    found: dict[str, list[str]] = {}
    for name in registry.list_available():
        try:
            found[name] = await adapters[name].list_models()
        except Exception as e:  # noqa: BLE001
            print(f"[models] {name}: failed: {e}")
    return found


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    models = asyncio.run(main())
    if not models:
        print("[models] no providers configured")
    for provider, names in models.items():
        print(f"{provider} ({len(names)}):")
        for name in names:
            print(f"  {name}")
