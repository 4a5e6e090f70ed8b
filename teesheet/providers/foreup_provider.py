import logging
from datetime import datetime
from typing import Any

import pytz
from pydantic import BaseModel, ConfigDict, Field

from teesheet.config import settings
from teesheet.models.schemas import (
    BookingDetails,
    BookingSlot,
    BuyerData,
    NameChangeDetails,
    TeeTime,
    TeeTimeBookingData,
    TeeTimeProjection,
)
from teesheet.providers.base import (
    ProviderDataError,
    ProviderRequestError,
    TeeSheetProvider,
    cents_to_dollars,
    dollars_to_cents,
)

logger = logging.getLogger(__name__)

FOREUP_API_URL = "https://api.foreupsoftware.com/api_rest/index.php"
FOREUP_MOCK_API_URL = "https://private-anon-67e30e32d1-foreup.apiary-mock.com/api_rest/index.php"


class ForeUpConfiguration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(default="", alias="USERNAME")
    password: str = Field(default="", alias="PASSWORD")
    base_endpoint: str | None = Field(default=None, alias="BASE_ENDPOINT")
    payment_type: str = Field(default="credit_card", alias="PAYMENT_TYPE")


class ForeUpProvider(TeeSheetProvider):
    """
    ForeUp tee-sheet API.

    JSON:API style resources under /courses/{course}/teesheets/{teesheet}.
    Tokens come from POST /tokens with the account's email and password and
    are sent as an x-authorization bearer header.
    """

    provider_id = "fore-up"
    log_name = "ForeUp"
    configuration_model = ForeUpConfiguration

    configuration: ForeUpConfiguration

    @property
    def base_url(self) -> str:
        if self.configuration.base_endpoint:
            return self.configuration.base_endpoint.rstrip("/")
        if settings.environment in ("production", "development"):
            return FOREUP_API_URL
        return FOREUP_MOCK_API_URL

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-authorization": f"Bearer {token}",
        }

    async def _fetch_token(self) -> tuple[str, str | None]:
        response = await self._request(
            "POST",
            f"{self.base_url}/tokens",
            operation="getToken",
            action="fetching token",
            refresh_on_auth_failure=False,
            json={
                "email": self.configuration.username,
                "password": self.configuration.password,
            },
        )
        token = (response.json().get("data") or {}).get("id")
        if not token:
            raise ProviderDataError("Error fetching token: token not found in response")
        return token, None

    # Availability

    async def get_tee_times(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str | None,
        start_time: str,
        end_time: str,
        date: str,
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            f"{self.base_url}/courses/{course_id}/teesheets/{tee_sheet_id}/teetimes",
            operation="getTeeTimes",
            action="fetching tee times",
            details={"course_id": course_id, "tee_sheet_id": tee_sheet_id, "date": date},
            headers=self._headers(token),
            params={"startTime": start_time, "endTime": end_time, "date": date},
        )
        return response.json().get("data") or []

    def get_provider_tee_time_id(self, tee_time: dict[str, Any]) -> str:
        return str(tee_time["id"])

    def to_projection(
        self, tee_time: dict[str, Any], course_id: str, existing: TeeTime | None = None
    ) -> TeeTimeProjection:
        attributes = tee_time["attributes"]
        # ForeUp reports local time with an offset; date and time are both kept in UTC.
        start = datetime.fromisoformat(attributes["time"]).astimezone(pytz.utc)
        allowed_group_sizes = attributes.get("allowedGroupSizes") or [attributes["availableSpots"]]

        return TeeTimeProjection(
            provider_tee_time_id=self.get_provider_tee_time_id(tee_time),
            course_id=course_id,
            number_of_holes=attributes.get("holes") or 18,
            date=start.replace(tzinfo=None),
            time=start.hour * 100 + start.minute,
            max_players_per_booking=max(allowed_group_sizes),
            available_first_hand_spots=self.get_available_spots_on_tee_time(tee_time),
            green_fee_per_player=dollars_to_cents(attributes.get("greenFee")),
            cart_fee_per_player=dollars_to_cents(attributes.get("cartFee")),
            green_fee_tax_per_player=dollars_to_cents(attributes.get("greenFeeTax")),
            cart_fee_tax_per_player=dollars_to_cents(attributes.get("cartFeeTax")),
            provider_date=attributes["time"],
        )

    def get_available_spots_on_tee_time(self, tee_time: dict[str, Any]) -> int:
        return max(int(tee_time["attributes"]["availableSpots"]), 0)

    # Bookings

    async def create_booking(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        data: dict[str, Any],
        user_id: str,
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.base_url}/courses/{course_id}/teesheets/{tee_sheet_id}/bookings",
            operation="createBooking",
            action="creating booking",
            user_id=user_id,
            details={"data": data},
            headers=self._headers(token),
            json={"data": data["data"]},
        )
        booking = response.json()
        logger.info(f"Created ForeUp booking {self.get_booking_id(booking)}")
        return booking

    async def delete_booking(
        self, token: str, course_id: str, tee_sheet_id: str, booking_id: str
    ) -> None:
        url = f"{self.base_url}/courses/{course_id}/teesheets/{tee_sheet_id}/bookings/{booking_id}"
        try:
            await self._request(
                "DELETE",
                url,
                operation="deleteBooking",
                action="deleting booking",
                details={"booking_id": booking_id},
                headers=self._headers(token),
            )
        except ProviderRequestError:
            if await self.check_booking_is_cancelled(token, course_id, tee_sheet_id, booking_id):
                logger.info(f"ForeUp booking {booking_id} was already cancelled")
                return
            raise
        logger.info(f"Booking deleted successfully: {booking_id}")

    async def check_booking_is_cancelled(
        self, token: str, course_id: str, tee_sheet_id: str, provider_booking_id: str
    ) -> bool:
        response = await self.client.get(
            f"{self.base_url}/courses/{course_id}/teesheets/{tee_sheet_id}"
            f"/bookings/{provider_booking_id}",
            headers=self._headers(token),
        )
        if not response.is_success:
            return False
        attributes = (response.json().get("data") or {}).get("attributes") or {}
        return str(attributes.get("status", "")).lower() == "cancelled"

    async def update_tee_time(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        booking_id: str,
        options: dict[str, Any],
        slot_id: str | None = None,
    ) -> dict[str, Any]:
        slot_id = slot_id or f"{booking_id}-1"
        response = await self._request(
            "PUT",
            f"{self.base_url}/courses/{course_id}/teesheets/{tee_sheet_id}"
            f"/bookings/{booking_id}/bookedPlayers/{slot_id}",
            operation="updateTeeTime",
            action="updating tee time",
            details={"booking_id": booking_id, "slot_id": slot_id, "options": options},
            headers=self._headers(token),
            json=options,
        )
        return response.json()

    def get_booking_creation_data(self, tee_time_data: TeeTimeBookingData) -> dict[str, Any]:
        return {
            "totalAmountPaid": cents_to_dollars(
                (tee_time_data.green_fees + tee_time_data.cart_fees) * tee_time_data.player_count
            ),
            "data": {
                "type": "bookings",
                "attributes": {
                    "start": tee_time_data.start_time,
                    "holes": tee_time_data.holes,
                    "players": tee_time_data.player_count,
                    "bookedPlayers": [
                        {
                            "personId": tee_time_data.provider_customer_id,
                            "accountNumber": tee_time_data.provider_account_number,
                        }
                    ],
                    "event_type": "tee_time",
                    "details": tee_time_data.notes,
                },
            },
        }

    def get_booking_id(self, booking: dict[str, Any]) -> str:
        return str(booking["data"]["id"])

    def get_player_count(self, booking: dict[str, Any]) -> int:
        return int(booking["data"]["attributes"]["playerCount"])

    def get_slot_ids_from_booking(self, booking: dict[str, Any]) -> list[str]:
        players = (
            ((booking["data"].get("relationships") or {}).get("bookedPlayers") or {}).get("data")
            or []
        )
        return [str(player["id"]) for player in players]

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
        return self.build_booking_slots(
            booking_id,
            slots,
            customer_id,
            lambda i: f"{provider_booking_id}-{i + 1}",
            provider_course_membership_id,
        )

    def get_booking_name_change_options(self, details: NameChangeDetails) -> dict[str, Any]:
        return {
            "data": {
                "type": "Guest",
                "attributes": {
                    "type": "Guest",
                    "name": details.name or "Guest",
                    "paid": False,
                    "cartPaid": False,
                    "noShow": False,
                    "personId": details.customer_id or None,
                },
            }
        }

    # Sales data

    def get_sales_data_options(
        self, booking: dict[str, Any], booking_details: BookingDetails
    ) -> dict[str, Any]:
        return {
            "token": booking_details.token,
            "courseId": booking_details.provider_course_id,
            "teesheetId": booking_details.provider_tee_sheet_id,
            "bookingId": self.get_booking_id(booking),
            "players": booking_details.player_count,
            "totalAmountPaid": cents_to_dollars(booking_details.total_amount_paid),
        }

    async def add_sales_data(self, options: dict[str, Any]) -> None:
        """
        Record the sale against the booking in three calls: open a cart for
        the booking, pay it, then mark it complete.
        """
        token = await self._require_token(options.get("token"), "adding sales data")
        course_id = options["courseId"]
        booking_id = options["bookingId"]
        headers = self._headers(token)
        details = {"booking_id": booking_id, "course_id": course_id}

        cart_response = await self._request(
            "POST",
            f"{self.base_url}/courses/{course_id}/carts",
            operation="addSalesData",
            action="creating cart",
            details=details,
            headers=headers,
            json={
                "data": {
                    "type": "cart",
                    "attributes": {
                        "bookingId": booking_id,
                        "teesheetId": options["teesheetId"],
                        "players": options["players"],
                    },
                }
            },
        )
        cart_id = cart_response.json()["data"]["id"]

        await self._request(
            "POST",
            f"{self.base_url}/courses/{course_id}/carts/{cart_id}/payments",
            operation="addSalesData",
            action="adding cart payment",
            details={**details, "cart_id": cart_id},
            headers=headers,
            json={
                "data": {
                    "type": "payment",
                    "attributes": {
                        "type": self.configuration.payment_type,
                        "amount": options["totalAmountPaid"],
                        "description": f"Booking {booking_id}",
                    },
                }
            },
        )

        await self._request(
            "PUT",
            f"{self.base_url}/courses/{course_id}/carts/{cart_id}",
            operation="addSalesData",
            action="completing cart",
            details={**details, "cart_id": cart_id},
            headers=headers,
            json={"data": {"type": "cart", "id": cart_id, "attributes": {"status": "complete"}}},
        )
        logger.info(f"Sales data added for ForeUp booking {booking_id} (cart {cart_id})")

    # Customers

    async def create_customer(
        self, token: str, course_id: str, customer_data: dict[str, Any]
    ) -> dict[str, Any]:
        await self._check_required_customer_fields(token, course_id, customer_data)
        response = await self._request(
            "POST",
            f"{self.base_url}/courses/{course_id}/customers",
            operation="createCustomer",
            action="creating customer",
            details={"customer_data": customer_data},
            headers=self._headers(token),
            json={"data": customer_data},
        )
        return response.json()

    async def _check_required_customer_fields(
        self, token: str, course_id: str, customer_data: dict[str, Any]
    ) -> None:
        response = await self._request(
            "GET",
            f"{self.base_url}/courses/{course_id}/settings/customerFieldSettings",
            operation="createCustomer",
            action="fetching customer field settings",
            headers=self._headers(token),
        )
        settings_data = response.json().get("data") or {}
        fields = (settings_data.get("attributes") or {}) if isinstance(settings_data, dict) else {}
        contact_info = customer_data["attributes"]["contact_info"]
        missing = [
            name
            for name, field in fields.items()
            if isinstance(field, dict) and field.get("required") and not contact_info.get(name)
        ]
        if missing:
            raise ProviderDataError(f"Missing required customer fields: {', '.join(missing)}")

    async def get_customer(
        self, token: str, course_id: str, buyer: BuyerData
    ) -> dict[str, Any] | None:
        response = await self._request(
            "GET",
            f"{self.base_url}/courses/{course_id}/customers",
            operation="getCustomer",
            action="fetching customer",
            details={"course_id": course_id, "email": buyer.email},
            headers=self._headers(token),
            params={"q": buyer.email},
        )
        customers = response.json().get("data") or []
        return customers[0] if customers else None

    def get_customer_creation_data(
        self, buyer: BuyerData, account_number: int | None = None
    ) -> dict[str, Any]:
        first_name, last_name = buyer.split_name()
        return {
            "type": "customer",
            "attributes": {
                "username": buyer.email,
                "account_number": account_number,
                "contact_info": {
                    "first_name": first_name,
                    "last_name": last_name,
                    "email": buyer.email,
                    "phone_number": buyer.phone,
                    "zip": buyer.zipcode,
                },
            },
        }

    def get_customer_id(self, customer: dict[str, Any]) -> str:
        return str(customer["data"]["id"])

    def get_customer_id_from_get_customer_response(
        self, customer: dict[str, Any]
    ) -> dict[str, Any]:
        attributes = customer.get("attributes") or {}
        return {
            "customer_id": str(customer["id"]),
            "account_number": attributes.get("account_number"),
        }

    # Capabilities

    def should_add_sale_data(self) -> bool:
        return True

    def supports_player_name_change(self) -> bool:
        return True

    def require_to_create_player_slots(self) -> bool:
        return True
