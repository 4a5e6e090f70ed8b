import json
import logging
import traceback
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar, NoReturn

import httpx
import pytz
from pydantic import BaseModel

from teesheet.config import settings
from teesheet.models.schemas import (
    BookingDetails,
    BookingSlot,
    BuyerData,
    IndexTeeTimeError,
    NameChangeDetails,
    TeeTime,
    TeeTimeBookingData,
    TeeTimeProjection,
)
from teesheet.services.cache_service import CacheService
from teesheet.services.database_service import database_service
from teesheet.services.error_log_service import ErrorLogService, error_log_service

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for tee-sheet provider failures."""


class ProviderRequestError(ProviderError):
    """A provider answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderDataError(ProviderError):
    """A provider response is missing data the adapter needs."""


class TeeTimeUnavailableError(ProviderError):
    """The tee time can no longer be sold for the requested party."""


def dollars_to_cents(amount: float | int | str | None) -> int:
    """Convert a decimal dollar amount to integer cents, rounding half up."""
    if amount in (None, ""):
        return 0
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_dollars(cents: int) -> float:
    return float(Decimal(cents) / 100)


def local_to_utc(local: datetime, timezone: str) -> datetime:
    """Interpret a naive datetime in the given timezone and return naive UTC."""
    tz = pytz.timezone(timezone)
    return tz.localize(local).astimezone(pytz.utc).replace(tzinfo=None)


def response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class TeeSheetProvider(ABC):
    """
    Abstract base class for tee-sheet providers.

    Each subclass adapts one provider's REST API to this interface. Raw
    provider payloads are plain dicts and are only interpreted by the
    provider that produced them; callers go through the extraction methods
    (get_booking_id, get_available_spots_on_tee_time, ...) instead.
    """

    provider_id: ClassVar[str]
    log_name: ClassVar[str]
    configuration_model: ClassVar[type[BaseModel]]
    auth_failure_statuses: ClassVar[tuple[int, ...]] = (403,)

    def __init__(
        self,
        configuration: str | dict[str, Any] | BaseModel,
        cache: CacheService,
        http_client: httpx.AsyncClient | None = None,
        timezone: str | None = None,
        error_logger: ErrorLogService | None = None,
    ) -> None:
        self.configuration = self.parse_configuration(configuration)
        self.cache = cache
        self.timezone = timezone or settings.timezone
        self.error_logger = error_logger or error_log_service
        self._client = http_client

    @classmethod
    def parse_configuration(cls, configuration: str | dict[str, Any] | BaseModel) -> Any:
        if isinstance(configuration, cls.configuration_model):
            return configuration
        if isinstance(configuration, str):
            return cls.configuration_model.model_validate_json(configuration or "{}")
        return cls.configuration_model.model_validate(configuration)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.provider_http_timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Tokens

    @property
    def token_cache_key(self) -> str:
        return f"provider-{self.provider_id}-token"

    @property
    def refresh_token_cache_key(self) -> str:
        return f"provider-{self.provider_id}-refresh-token"

    async def get_token(self) -> str | None:
        """
        Return a usable token, fetching a new one on a cache miss.

        Fetched tokens are written to the provider_auth_tokens audit table
        and cached for settings.token_cache_ttl_seconds. Concurrent misses
        may each fetch a token.
        """
        token = await self.cache.get(self.token_cache_key)
        if token:
            return token

        access_token, refresh_token = await self._fetch_token()
        await database_service.save_provider_auth_token(
            self.provider_id, access_token, refresh_token
        )
        await self.cache.set(self.token_cache_key, access_token, settings.token_cache_ttl_seconds)
        logger.info(f"Fetched new {self.provider_id} token")
        return access_token

    async def _fetch_token(self) -> tuple[str, str | None]:
        """Request a fresh (access_token, refresh_token) pair from the provider."""
        raise ProviderError(f"{self.provider_id} does not fetch tokens")

    async def refresh_token(self) -> str | None:
        """
        Drop the cached token and fetch a new one.

        The request that was rejected is not retried here; callers see the
        original error and retry with the new token on their next call.
        """
        await self.cache.invalidate(self.token_cache_key)
        return await self.get_token()

    async def _require_token(self, token: str | None, action: str) -> str:
        if token:
            return token
        token = await self.get_token()
        if not token:
            raise ProviderDataError(f"Error {action}: failed to get token")
        return token

    # HTTP

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        action: str,
        user_id: str = "",
        details: dict[str, Any] | None = None,
        refresh_on_auth_failure: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request and raise ProviderRequestError on a non-2xx status.

        Args:
            operation: Operation name used in the error-log location.
            action: Human description, e.g. "creating booking".
            refresh_on_auth_failure: Refresh the token on an auth failure.
                Token requests pass False so a rejected token fetch does
                not fetch again.
        """
        logger.debug(f"{self.log_name} {method} {url}")
        response = await self.client.request(method, url, **kwargs)
        if not response.is_success:
            await self._raise_for_response(
                response,
                operation=operation,
                action=action,
                user_id=user_id,
                details=details,
                refresh_on_auth_failure=refresh_on_auth_failure,
            )
        return response

    async def _raise_for_response(
        self,
        response: httpx.Response,
        *,
        operation: str,
        action: str,
        user_id: str = "",
        details: dict[str, Any] | None = None,
        refresh_on_auth_failure: bool = True,
    ) -> NoReturn:
        body = response_body(response)
        logger.error(f"Error {action} with {self.log_name}: {response.status_code} {body}")

        if refresh_on_auth_failure and response.status_code in self.auth_failure_statuses:
            try:
                await self.refresh_token()
            except Exception as e:
                logger.exception(f"Failed to refresh {self.provider_id} token: {e}")

        await self.error_logger.error_log(
            url=f"/{self.log_name}/{operation}",
            message=f"ERROR_{action.upper().replace(' ', '_')}",
            user_id=user_id,
            additional_details={
                **(details or {}),
                "status_code": response.status_code,
                "response": body,
            },
        )
        raise ProviderRequestError(
            f"Error {action}: {json.dumps(body, default=str)}", response.status_code, body
        )

    # Availability

    @abstractmethod
    async def get_tee_times(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str | None,
        start_time: str,
        end_time: str,
        date: str,
    ) -> list[dict[str, Any]]:
        """Fetch the provider's raw tee times for a day and time window."""
        pass

    @abstractmethod
    def get_provider_tee_time_id(self, tee_time: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def to_projection(
        self, tee_time: dict[str, Any], course_id: str, existing: TeeTime | None = None
    ) -> TeeTimeProjection:
        """
        Map a raw provider tee time to its canonical projection.

        Args:
            tee_time: One entry from get_tee_times.
            course_id: Local course id.
            existing: The stored row for this tee time, for values the
                provider does not report.
        """
        pass

    @abstractmethod
    def get_available_spots_on_tee_time(self, tee_time: dict[str, Any]) -> int:
        pass

    def find_tee_time_by_id(
        self, tee_time_id: str, tee_times: list[dict[str, Any]]
    ) -> dict[str, Any] | None:
        return next(
            (t for t in tee_times if self.get_provider_tee_time_id(t) == str(tee_time_id)),
            None,
        )

    async def index_tee_time(
        self,
        date: str,
        provider_course_id: str,
        provider_tee_sheet_id: str,
        token: str,
        time: int,
        tee_time_id: str,
    ) -> IndexTeeTimeError | None:
        """
        Re-sync a single stored tee time with the provider before it is sold.

        Returns None when the stored row is current or was updated, and an
        IndexTeeTimeError carrying a user-facing message when the tee time
        can't be confirmed (typically because someone else just booked it).
        """
        try:
            indexed = await database_service.get_tee_time(tee_time_id)
            if not indexed:
                raise ValueError(f"Tee time {tee_time_id} not found")

            tee_times = await self.get_tee_times(
                token,
                provider_course_id,
                provider_tee_sheet_id,
                f"{time:04d}",
                f"{time + 1:04d}",
                date,
            )
            tee_time = self.find_tee_time_by_id(indexed.provider_tee_time_id, tee_times)
            if tee_time is None:
                raise ProviderDataError("Tee time not available for booking")

            projection = self.to_projection(tee_time, indexed.course_id, indexed)
            if projection == indexed.projection():
                return None

            await database_service.update_tee_times(
                [TeeTime.from_projection(projection, tee_time_id=indexed.id)]
            )
            return None
        except Exception as e:
            logger.exception(f"Error indexing tee time {tee_time_id}: {e}")
            await self.error_logger.error_log(
                url=f"/{self.log_name}/indexTeeTime",
                message="ERROR_INDEXING_TEE_TIME",
                stack_trace=traceback.format_exc(),
                additional_details={
                    "date": date,
                    "provider_course_id": provider_course_id,
                    "provider_tee_sheet_id": provider_tee_sheet_id,
                    "time": time,
                    "tee_time_id": tee_time_id,
                },
            )
            return IndexTeeTimeError()

    # Bookings

    @abstractmethod
    async def create_booking(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        data: dict[str, Any],
        user_id: str,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def delete_booking(
        self, token: str, course_id: str, tee_sheet_id: str, booking_id: str
    ) -> None:
        """Cancel a booking. Already-cancelled bookings are not an error."""
        pass

    @abstractmethod
    async def check_booking_is_cancelled(
        self, token: str, course_id: str, tee_sheet_id: str, provider_booking_id: str
    ) -> bool:
        pass

    @abstractmethod
    async def update_tee_time(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        booking_id: str,
        options: dict[str, Any],
        slot_id: str | None = None,
    ) -> dict[str, Any]:
        """Change the player on one slot of an existing booking."""
        pass

    @abstractmethod
    def get_booking_creation_data(self, tee_time_data: TeeTimeBookingData) -> dict[str, Any]:
        pass

    @abstractmethod
    def get_booking_id(self, booking: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def get_player_count(self, booking: dict[str, Any]) -> int:
        pass

    @abstractmethod
    def get_slot_ids_from_booking(self, booking: dict[str, Any]) -> list[str]:
        pass

    @abstractmethod
    def get_slot_ids_for_booking(
        self,
        booking_id: str,
        slots: int,
        customer_id: str,
        provider_booking_id: str | list[str],
        provider_id: str,
        course_id: str,
        provider_slot_ids: list[str] | None = None,
        provider_course_membership_id: str | None = None,
    ) -> list[BookingSlot]:
        pass

    def build_booking_slots(
        self,
        booking_id: str,
        slots: int,
        customer_id: str,
        slotnumber: Callable[[int], str],
        provider_course_membership_id: str | None = None,
    ) -> list[BookingSlot]:
        """Build one slot per player; the first belongs to the purchaser."""
        return [
            BookingSlot(
                booking_id=booking_id,
                slotnumber=slotnumber(i),
                name="" if i == 0 else "Guest",
                customer_id=customer_id if i == 0 else "",
                slot_position=i + 1,
                provider_course_membership_id=provider_course_membership_id or None,
            )
            for i in range(slots)
        ]

    @abstractmethod
    def get_booking_name_change_options(self, details: NameChangeDetails) -> dict[str, Any]:
        pass

    # Sales data

    @abstractmethod
    def get_sales_data_options(
        self, booking: dict[str, Any], booking_details: BookingDetails
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def add_sales_data(self, options: dict[str, Any]) -> None:
        pass

    # Customers

    @abstractmethod
    async def create_customer(
        self, token: str, course_id: str, customer_data: dict[str, Any]
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_customer(
        self, token: str, course_id: str, buyer: BuyerData
    ) -> dict[str, Any] | None:
        """Look up a customer by email; None when there is no match."""
        pass

    @abstractmethod
    def get_customer_creation_data(
        self, buyer: BuyerData, account_number: int | None = None
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    def get_customer_id(self, customer: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def get_customer_id_from_get_customer_response(
        self, customer: dict[str, Any]
    ) -> dict[str, Any]:
        """Return {"customer_id": str} plus "account_number" where the provider has one."""
        pass

    # Capabilities

    @abstractmethod
    def should_add_sale_data(self) -> bool:
        pass

    @abstractmethod
    def supports_player_name_change(self) -> bool:
        pass

    @abstractmethod
    def require_to_create_player_slots(self) -> bool:
        pass
