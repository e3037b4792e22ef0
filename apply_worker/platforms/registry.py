"""Adapter lookup by job URL."""

from apply_worker.platforms.base import SiteAdapter
from apply_worker.platforms.greenhouse.adapter import GreenhouseAdapter
from apply_worker.platforms.lever.adapter import LeverAdapter


def default_adapters() -> list[SiteAdapter]:
    return [GreenhouseAdapter(), LeverAdapter()]


def resolve_adapter(url: str, adapters: list[SiteAdapter] | None = None) -> SiteAdapter | None:
    """First adapter whose supports(url) is true, or None."""
    for adapter in adapters if adapters is not None else default_adapters():
        if adapter.supports(url):
            return adapter
    return None
