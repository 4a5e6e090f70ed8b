"""
Resolves course links into ready-to-use provider adapters.

Adapters are built per course link from its stored configuration and share
one HTTP client and one token cache owned by this service.
"""

import logging

import httpx

from teesheet.config import settings
from teesheet.models.schemas import ProviderCourseLink
from teesheet.providers.base import ProviderDataError, TeeSheetProvider
from teesheet.providers.registry import get_provider
from teesheet.services.cache_service import CacheService, cache_service
from teesheet.services.database_service import database_service

logger = logging.getLogger(__name__)


class ProviderService:
    def __init__(
        self,
        cache: CacheService | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.cache = cache or cache_service
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.provider_http_timeout_seconds)
        return self._http_client

    def get_provider(self, link: ProviderCourseLink) -> TeeSheetProvider:
        return get_provider(
            link.provider_id,
            link.provider_course_configuration,
            self.cache,
            http_client=self.http_client,
            timezone=link.timezone,
        )

    async def get_provider_and_key(
        self, link: ProviderCourseLink
    ) -> tuple[TeeSheetProvider, str]:
        """
        Build the adapter for a course link and obtain a token for it.

        Raises:
            ValueError: The link names an unknown provider.
            ProviderDataError: The provider could not issue a token.
        """
        provider = self.get_provider(link)
        token = await provider.get_token()
        if not token:
            raise ProviderDataError(f"Failed to get token for provider {link.provider_id}")
        return provider, token

    async def get_provider_and_key_for_course(
        self, course_id: str
    ) -> tuple[TeeSheetProvider, str, ProviderCourseLink]:
        link = await database_service.get_provider_course_link_for_course(course_id)
        if not link:
            raise ValueError(f"No provider linked to course {course_id}")
        provider, token = await self.get_provider_and_key(link)
        return provider, token, link

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        await self.cache.close()


provider_service = ProviderService()
