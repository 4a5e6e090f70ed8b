from typing import Any

import httpx
from pydantic import BaseModel

from teesheet.providers.base import TeeSheetProvider
from teesheet.providers.clubprophet_provider import ClubProphetProvider
from teesheet.providers.foreup_provider import ForeUpProvider
from teesheet.providers.lightspeed_provider import LightspeedProvider
from teesheet.providers.quick_eighteen_provider import QuickEighteenProvider
from teesheet.services.cache_service import CacheService

PROVIDERS: dict[str, type[TeeSheetProvider]] = {
    provider.provider_id: provider
    for provider in (
        ForeUpProvider,
        ClubProphetProvider,
        LightspeedProvider,
        QuickEighteenProvider,
    )
}


def get_provider(
    provider_id: str,
    configuration: str | dict[str, Any] | BaseModel,
    cache: CacheService,
    http_client: httpx.AsyncClient | None = None,
    timezone: str | None = None,
) -> TeeSheetProvider:
    """
    Build the provider adapter registered for provider_id.

    Raises:
        ValueError: No provider is registered under provider_id.
    """
    provider_class = PROVIDERS.get(provider_id)
    if provider_class is None:
        raise ValueError(f"Unknown provider {provider_id}")
    return provider_class(configuration, cache, http_client=http_client, timezone=timezone)
