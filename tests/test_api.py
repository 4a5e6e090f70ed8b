"""
Tests for API endpoints in teesheet/api/.

These tests verify the FastAPI endpoints for health checks and bookings
using the TestClient.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from teesheet.models.schemas import BookingSlot, CustomerRef, ReservationResult
from teesheet.providers.base import (
    ProviderRequestError,
    TeeTimeUnavailableError,
)


@pytest.fixture
def test_client() -> TestClient:
    """Create a TestClient for the FastAPI app."""
    from teesheet.main import app

    return TestClient(app)


@pytest.fixture
def reserve_payload() -> dict:
    return {
        "booking_id": "booking-1",
        "link_id": "link-1",
        "tee_time_id": "tt-1",
        "buyer": {
            "user_id": "user-1",
            "name": "Jane Golfer",
            "email": "jane@example.com",
        },
        "player_count": 2,
        "total_amount_paid": 12100,
    }


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, test_client: TestClient) -> None:
        """Test the /health endpoint."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "teesheet"

    def test_root_endpoint(self, test_client: TestClient) -> None:
        """Test the root / endpoint."""
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "TeeSheet - Golf Tee-Sheet Provider Layer"
        assert data["version"] == "0.1.0"
        assert data["endpoints"]["health"] == "/health"
        assert data["endpoints"]["jobs"] == "/jobs/index-tee-times"
        assert data["endpoints"]["bookings"] == "/bookings"


class TestReserveEndpoint:
    """Tests for POST /bookings/reserve."""

    def test_reserve_booking(self, test_client: TestClient, reserve_payload: dict) -> None:
        """Test a successful reservation returns the provider booking."""
        result = ReservationResult(
            booking_id="booking-1",
            provider_booking_id="pb-1",
            customer=CustomerRef(customer_id="88", account_number=12345),
            slots=[
                BookingSlot(booking_id="booking-1", slotnumber="pb-1-1", slot_position=1),
                BookingSlot(booking_id="booking-1", slotnumber="pb-1-2", slot_position=2),
            ],
            sales_data_added=True,
        )
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.reserve_booking = AsyncMock(return_value=result)

            response = test_client.post("/bookings/reserve", json=reserve_payload)

            assert response.status_code == 200
            data = response.json()
            assert data["provider_booking_id"] == "pb-1"
            assert data["customer"]["customer_id"] == "88"
            assert [s["slot_position"] for s in data["slots"]] == [1, 2]
            request = mock_service.reserve_booking.call_args[0][0]
            assert request.player_count == 2
            assert request.buyer.email == "jane@example.com"

    def test_reserve_unknown_tee_time(
        self, test_client: TestClient, reserve_payload: dict
    ) -> None:
        """Test that an unknown tee time is a 404."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.reserve_booking = AsyncMock(
                side_effect=ValueError("Tee time tt-1 not found")
            )

            response = test_client.post("/bookings/reserve", json=reserve_payload)

            assert response.status_code == 404
            assert response.json()["detail"] == "Tee time tt-1 not found"

    def test_reserve_unavailable(self, test_client: TestClient, reserve_payload: dict) -> None:
        """Test that a sold-out tee time is a 409."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.reserve_booking = AsyncMock(
                side_effect=TeeTimeUnavailableError("Only 1 spots left on tee time tt-1")
            )

            response = test_client.post("/bookings/reserve", json=reserve_payload)

            assert response.status_code == 409
            assert "Only 1 spots" in response.json()["detail"]

    def test_reserve_provider_failure(
        self, test_client: TestClient, reserve_payload: dict
    ) -> None:
        """Test that a provider failure is a 502."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.reserve_booking = AsyncMock(
                side_effect=ProviderRequestError("Error creating booking", 500, {})
            )

            response = test_client.post("/bookings/reserve", json=reserve_payload)

            assert response.status_code == 502

    def test_reserve_too_many_players(
        self, test_client: TestClient, reserve_payload: dict
    ) -> None:
        """Test that more than four players fails validation."""
        reserve_payload["player_count"] = 5

        response = test_client.post("/bookings/reserve", json=reserve_payload)

        assert response.status_code == 422


class TestCancelEndpoint:
    """Tests for POST /bookings/{link_id}/{provider_booking_id}/cancel."""

    def test_cancel_booking(self, test_client: TestClient) -> None:
        """Test cancelling a booking."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.cancel_booking = AsyncMock(return_value=None)

            response = test_client.post("/bookings/link-1/pb-1/cancel")

            assert response.status_code == 200
            assert response.json() == {
                "link_id": "link-1",
                "provider_booking_id": "pb-1",
                "cancelled": True,
            }
            mock_service.cancel_booking.assert_awaited_once_with("link-1", "pb-1")

    def test_cancel_unknown_link(self, test_client: TestClient) -> None:
        """Test cancelling against an unknown link."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.cancel_booking = AsyncMock(
                side_effect=ValueError("Provider course link link-9 not found")
            )

            response = test_client.post("/bookings/link-9/pb-1/cancel")

            assert response.status_code == 404

    def test_cancel_provider_failure(self, test_client: TestClient) -> None:
        """Test that a provider refusal is a 502."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.cancel_booking = AsyncMock(
                side_effect=ProviderRequestError("Error deleting booking", 400, {})
            )

            response = test_client.post("/bookings/link-1/pb-1/cancel")

            assert response.status_code == 502


class TestPlayerNameEndpoint:
    """Tests for POST /bookings/{link_id}/{provider_booking_id}/player-name."""

    def test_change_player_name(self, test_client: TestClient) -> None:
        """Test renaming a player slot."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.change_player_name = AsyncMock(return_value={"success": True})

            response = test_client.post(
                "/bookings/link-1/pb-1/player-name",
                json={"slot_id": "pb-1-2", "name": "Sam Putter", "customer_id": "91"},
            )

            assert response.status_code == 200
            assert response.json() == {"success": True}
            args = mock_service.change_player_name.call_args[0]
            assert args[:3] == ("link-1", "pb-1", "pb-1-2")
            assert args[3].name == "Sam Putter"
            assert args[3].customer_id == "91"

    def test_change_player_name_unsupported(self, test_client: TestClient) -> None:
        """Test that an unsupported provider is a 400."""
        with patch("teesheet.api.bookings.booking_service") as mock_service:
            mock_service.change_player_name = AsyncMock(
                side_effect=ValueError("Provider quick-18 does not support player name changes")
            )

            response = test_client.post(
                "/bookings/link-1/pb-1/player-name",
                json={"slot_id": "1", "name": "Sam Putter"},
            )

            assert response.status_code == 400
            assert "does not support" in response.json()["detail"]
