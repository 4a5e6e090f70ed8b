"""
Tests for QuickEighteenProvider in teesheet/providers/quick_eighteen_provider.py.
"""

import base64
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from teesheet.models.schemas import BuyerData, TeeTimeBookingData
from teesheet.providers.base import ProviderDataError, ProviderError, ProviderRequestError
from teesheet.providers.quick_eighteen_provider import QuickEighteenProvider
from teesheet.services.cache_service import InMemoryCacheService

CONFIGURATION = {
    "BASE_ENDPOINT": "https://q18.test/api",
    "USERNAME": "user",
    "PASSWORD": "pass",
    "FACILITY_ID": "55",
    "PRICE_GROUP": "Public",
    "PRICE_SCHEDULE_ID": 9,
}
FACILITY = "/api/facility/55"


def make_provider(handler, error_logger=None) -> QuickEighteenProvider:
    if error_logger is None:
        error_logger = MagicMock()
        error_logger.error_log = AsyncMock()
    return QuickEighteenProvider(
        CONFIGURATION,
        InMemoryCacheService(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        timezone="America/Chicago",
        error_logger=error_logger,
    )


def q18_tee_time(**overrides) -> dict:
    values = {
        "TeeTimeId": 321,
        "TeeDateTime": "2025-06-01 08:30",
        "Availability": 4,
        "Prices": [
            {
                "GreensFee": 45.5,
                "Adjustments": [
                    {"Name": "Booking Fee", "Amount": 2.0},
                    {"Name": "Taxes and/or Fees", "Amount": 3.64},
                ],
            }
        ],
    }
    values.update(overrides)
    return values


class TestQuickEighteenToken:
    @pytest.mark.asyncio
    async def test_token_is_basic_credentials(self) -> None:
        """Test that the token is base64 of username:password and never cached."""
        provider = make_provider(lambda request: httpx.Response(500))

        token = await provider.get_token()

        assert base64.b64decode(token).decode() == "user:pass"
        assert await provider.cache.get(provider.token_cache_key) is None


class TestQuickEighteenTeeTimes:
    @pytest.mark.asyncio
    async def test_get_tee_times(self) -> None:
        """Test the tee-time query and the Times envelope."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"{FACILITY}/teetime"
            assert request.url.params["teedate"] == "2025-06-01"
            assert request.url.params["pricegroup"] == "Public"
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"Times": [q18_tee_time()]})

        provider = make_provider(handler)
        token = await provider.get_token()
        tee_times = await provider.get_tee_times(token, "3", None, "0000", "2359", "2025-06-01")

        assert [provider.get_provider_tee_time_id(t) for t in tee_times] == ["321"]

    def test_to_projection(self) -> None:
        """Test local time, fee and tax mapping."""
        provider = make_provider(lambda request: httpx.Response(200))

        projection = provider.to_projection(q18_tee_time(), "course-1")

        assert projection.date == datetime(2025, 6, 1, 13, 30)
        assert projection.time == 830
        assert projection.green_fee_per_player == 4550
        assert projection.green_fee_tax_per_player == 364
        assert projection.cart_fee_per_player == 0
        assert projection.provider_date == "2025-06-01T08:30:00.000"

    def test_to_projection_without_prices(self) -> None:
        """Test that a tee time without pricing is rejected."""
        provider = make_provider(lambda request: httpx.Response(200))

        with pytest.raises(ProviderDataError, match="Pricing not found"):
            provider.to_projection(q18_tee_time(Prices=[]), "course-1")

    def test_negative_availability(self) -> None:
        """Test that negative availability maps to 0 spots."""
        provider = make_provider(lambda request: httpx.Response(200))
        assert provider.get_available_spots_on_tee_time(q18_tee_time(Availability=-1)) == 0


class TestQuickEighteenDelete:
    """Tests for cancellation and its re-fetch on failure."""

    @pytest.mark.asyncio
    async def test_delete_success(self) -> None:
        """Test a plain successful cancel."""
        provider = make_provider(lambda request: httpx.Response(200, json=True))
        await provider.delete_booking("tok", "3", "", "777")

    @pytest.mark.asyncio
    async def test_false_body_but_already_cancelled(self) -> None:
        """Test that a false answer on an already-cancelled reservation succeeds."""
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            if request.method == "POST":
                return httpx.Response(200, json=False)
            return httpx.Response(200, json={"Id": 777, "Status": "Cancelled"})

        provider = make_provider(handler)
        await provider.delete_booking("tok", "3", "", "777")

        assert methods == ["POST", "GET"]

    @pytest.mark.asyncio
    async def test_failure_raises_with_reservation(self) -> None:
        """Test that an uncancelled reservation is logged and raised."""
        error_logger = MagicMock()
        error_logger.error_log = AsyncMock()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(400, json={"Message": "bad"})
            return httpx.Response(200, json={"Id": 777, "Status": "Complete"})

        provider = make_provider(handler, error_logger=error_logger)
        provider.refresh_token = AsyncMock()

        with pytest.raises(ProviderRequestError) as exc_info:
            await provider.delete_booking("tok", "3", "", "777")

        assert exc_info.value.body == {"Id": 777, "Status": "Complete"}
        assert error_logger.error_log.call_args.kwargs["message"] == "ERROR_DELETING_BOOKING"
        provider.refresh_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auth_failure_refreshes(self) -> None:
        """Test that a 403 on cancel refreshes the token."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(403, json={"Message": "forbidden"})
            return httpx.Response(403, json={"Message": "forbidden"})

        provider = make_provider(handler)
        provider.get_token = AsyncMock(return_value="tok-2")

        with pytest.raises(ProviderRequestError):
            await provider.delete_booking("tok", "3", "", "777")

        provider.get_token.assert_awaited_once()


class TestQuickEighteenBookings:
    def test_booking_creation_data(self) -> None:
        """Test the reservation payload."""
        provider = make_provider(lambda request: httpx.Response(200))

        data = provider.get_booking_creation_data(
            TeeTimeBookingData(
                tee_time_id="local-1",
                provider_tee_time_id="321",
                provider_course_id="3",
                provider_customer_id="44",
                start_time="2025-06-01T08:30:00.000",
                player_count=2,
                green_fees=4550,
            )
        )

        assert data["TeeTimeId"] == 321
        assert data["CustomerId"] == 44
        assert data["GreensFeeAmountPerPlayer"] == 45.5
        assert data["PriceScheduleId"] == 9
        assert data["TeeDateTime"] == "2025-06-01 08:30"

    def test_slot_ids_from_single_id(self) -> None:
        """Test that a single provider id fills the first slot only."""
        provider = make_provider(lambda request: httpx.Response(200))

        slots = provider.get_slot_ids_for_booking("b1", 2, "44", "777", "quick-18", "course-1")

        assert [s.slotnumber for s in slots] == ["777", ""]

    def test_slot_ids_from_list(self) -> None:
        """Test that a list of provider ids maps one per slot."""
        provider = make_provider(lambda request: httpx.Response(200))

        slots = provider.get_slot_ids_for_booking(
            "b1", 2, "44", ["777", "778"], "quick-18", "course-1"
        )

        assert [s.slotnumber for s in slots] == ["777", "778"]

    @pytest.mark.asyncio
    async def test_get_customer_upserts(self) -> None:
        """Test that the customer lookup posts the buyer."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.params["type"] == "BaseCustomer"
            return httpx.Response(200, json={"Id": 44})

        provider = make_provider(handler)
        buyer = BuyerData(user_id="u1", name="Ada Lovelace", email="ada@example.com")
        customer = await provider.get_customer("tok", "3", buyer)

        assert provider.get_customer_id_from_get_customer_response(customer) == {
            "customer_id": "44"
        }

    def test_flags(self) -> None:
        provider = make_provider(lambda request: httpx.Response(200))
        assert provider.should_add_sale_data() is False
        assert provider.supports_player_name_change() is False
        assert provider.require_to_create_player_slots() is False

    @pytest.mark.asyncio
    async def test_update_tee_time_unsupported(self) -> None:
        """Test that a direct name change raises the provider error type."""
        provider = make_provider(lambda request: httpx.Response(200))

        with pytest.raises(ProviderError, match="does not support player name changes"):
            await provider.update_tee_time("tok", "3", "", "777", {}, "1")
