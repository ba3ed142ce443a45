"""
Switchboard - Router bootstrap

Builds a ProviderRouter from settings: opens the store, loads the persisted
config (or the default/migrated one) and the usage statistics.
"""

from __future__ import annotations

import logging

from adapters.router import ProviderRouter
from switchboard.config import SwitchboardSettings, default_router_config, get_settings
from switchboard.store import ConfigStore, open_backend

logger = logging.getLogger("switchboard.service")


async def open_router(settings: SwitchboardSettings | None = None) -> ProviderRouter:
    """
    Create a router backed by the configured store.

    When nothing is stored yet, the default config is used and written back
    so a migrated legacy key is only migrated once.

    Args:
        settings: Settings to use, defaults to the process settings

    Returns:
        Ready router
    """
    settings = settings or get_settings()
    store = ConfigStore(open_backend(settings.store_url))

    config = await store.load_config()
    if config is None:
        config = default_router_config(settings)
        if config.providers:
            await store.save_config(config)
        logger.info("No stored provider config, using defaults")

    stats = await store.load_usage_stats()

    try:
        router = ProviderRouter(
            config,
            store=store,
            stats=stats,
            adapter_options=settings.adapter_options(),
        )
    except Exception:
        await store.close()
        raise
    logger.info(f"Router opened from {settings.store_url}")
    return router
