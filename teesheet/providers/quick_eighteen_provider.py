import base64
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

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
    ProviderError,
    ProviderRequestError,
    TeeSheetProvider,
    cents_to_dollars,
    dollars_to_cents,
    local_to_utc,
    response_body,
)

logger = logging.getLogger(__name__)

TAX_ADJUSTMENT_NAME = "Taxes and/or Fees"


class QuickEighteenConfiguration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_endpoint: str = Field(default="", alias="BASE_ENDPOINT")
    username: str = Field(default="", alias="USERNAME")
    password: str = Field(default="", alias="PASSWORD")
    facility_id: str = Field(default="", alias="FACILITY_ID")
    price_group: str = Field(default="", alias="PRICE_GROUP")
    price_schedule_id: int | None = Field(default=None, alias="PRICE_SCHEDULE_ID")


class QuickEighteenProvider(TeeSheetProvider):
    """
    QuickEighteen facility API with HTTP Basic auth.

    The token is just the base64 of the configured credentials, so it is
    never cached or stored.
    """

    provider_id = "quick-18"
    log_name = "QuickEighteen"
    configuration_model = QuickEighteenConfiguration

    configuration: QuickEighteenConfiguration

    @property
    def facility_url(self) -> str:
        base = self.configuration.base_endpoint.rstrip("/")
        return f"{base}/facility/{self.configuration.facility_id}"

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
        }

    async def get_token(self) -> str | None:
        credentials = f"{self.configuration.username}:{self.configuration.password}"
        return base64.b64encode(credentials.encode()).decode()

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
            f"{self.facility_url}/teetime",
            operation="getTeeTimes",
            action="fetching tee times",
            details={"course_id": course_id, "date": date},
            headers=self._headers(token),
            params={
                "teedate": date,
                "pricegroup": self.configuration.price_group,
                "courseid": course_id,
            },
        )
        return response.json().get("Times") or []

    def get_provider_tee_time_id(self, tee_time: dict[str, Any]) -> str:
        return str(tee_time["TeeTimeId"])

    def to_projection(
        self, tee_time: dict[str, Any], course_id: str, existing: TeeTime | None = None
    ) -> TeeTimeProjection:
        # TeeDateTime is course-local "YYYY-MM-DD HH:MM".
        local = datetime.strptime(tee_time["TeeDateTime"], "%Y-%m-%d %H:%M")
        hours, minutes = tee_time["TeeDateTime"].split(" ")[1].split(":")[:2]

        prices = tee_time.get("Prices") or []
        if not prices:
            raise ProviderDataError("Pricing not found")
        pricing = prices[0]
        taxes = next(
            (a for a in pricing.get("Adjustments") or [] if a.get("Name") == TAX_ADJUSTMENT_NAME),
            None,
        )

        return TeeTimeProjection(
            provider_tee_time_id=self.get_provider_tee_time_id(tee_time),
            course_id=course_id,
            number_of_holes=18,
            date=local_to_utc(local, self.timezone),
            time=int(hours) * 100 + int(minutes),
            max_players_per_booking=tee_time["Availability"],
            available_first_hand_spots=self.get_available_spots_on_tee_time(tee_time),
            green_fee_per_player=dollars_to_cents(pricing.get("GreensFee")),
            cart_fee_per_player=0,
            green_fee_tax_per_player=dollars_to_cents(taxes.get("Amount")) if taxes else 0,
            cart_fee_tax_per_player=0,
            provider_date=local.strftime("%Y-%m-%dT%H:%M:%S.000"),
        )

    def get_available_spots_on_tee_time(self, tee_time: dict[str, Any]) -> int:
        return max(int(tee_time["Availability"]), 0)

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
            f"{self.facility_url}/reservation",
            operation="createBooking",
            action="creating booking",
            user_id=user_id,
            details={"data": data},
            headers=self._headers(token),
            json=data,
        )
        return response.json()

    async def delete_booking(
        self, token: str, course_id: str, tee_sheet_id: str, booking_id: str
    ) -> None:
        """
        Cancel a reservation by setting its status.

        QuickEighteen sometimes answers a cancel with a `false` body rather
        than an error status. Either way the reservation is fetched again:
        if it is already cancelled the call succeeds, otherwise the error
        carries the reservation as the provider now reports it.
        """
        url = f"{self.facility_url}/reservation/{booking_id}"
        headers = self._headers(token)
        response = await self.client.post(url, headers=headers, json={"Status": "Cancelled"})
        data = response_body(response)

        if response.is_success and data is not False:
            logger.info(f"Booking deleted successfully: {booking_id}")
            return

        logger.error(f"Error deleting booking {booking_id}: {response.status_code} {data}")
        reservation = response_body(await self.client.get(url, headers=headers))
        if isinstance(reservation, dict) and reservation.get("Status") == "Cancelled":
            logger.info(f"QuickEighteen reservation {booking_id} was already cancelled")
            return

        await self.error_logger.error_log(
            url=f"/{self.log_name}/deleteBooking",
            message="ERROR_DELETING_BOOKING",
            additional_details={
                "booking_id": booking_id,
                "is_error": not response.is_success,
                "data": data,
                "reservation": reservation,
            },
        )
        if response.status_code in self.auth_failure_statuses:
            await self.refresh_token()
        raise ProviderRequestError(
            f"Error deleting booking: {reservation}", response.status_code, reservation
        )

    async def check_booking_is_cancelled(
        self, token: str, course_id: str, tee_sheet_id: str, provider_booking_id: str
    ) -> bool:
        response = await self.client.get(
            f"{self.facility_url}/reservation/{provider_booking_id}",
            headers=self._headers(token or await self.get_token()),
        )
        if not response.is_success:
            return False
        return response.json().get("Status") == "Cancelled"

    async def update_tee_time(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        booking_id: str,
        options: dict[str, Any],
        slot_id: str | None = None,
    ) -> dict[str, Any]:
        raise ProviderError("QuickEighteen does not support player name changes")

    def get_booking_creation_data(self, tee_time_data: TeeTimeBookingData) -> dict[str, Any]:
        start = datetime.fromisoformat(tee_time_data.start_time.replace(" ", "T"))
        return {
            "CourseId": int(tee_time_data.provider_course_id),
            "TeeTimeId": int(tee_time_data.provider_tee_time_id),
            "CustomerId": int(tee_time_data.provider_customer_id),
            "Players": tee_time_data.player_count,
            "GreensFeeAmountPerPlayer": cents_to_dollars(tee_time_data.green_fees),
            "PriceScheduleId": self.configuration.price_schedule_id,
            "Status": "Complete",
            "TeeDateTime": start.strftime("%Y-%m-%d %H:%M"),
            "Notes": tee_time_data.notes,
        }

    def get_booking_id(self, booking: dict[str, Any]) -> str:
        return str(booking["Details"]["Id"])

    def get_player_count(self, booking: dict[str, Any]) -> int:
        return int(booking["Players"])

    def get_slot_ids_from_booking(self, booking: dict[str, Any]) -> list[str]:
        return []

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
        if isinstance(provider_booking_id, list):
            slot_ids = provider_booking_id
        else:
            slot_ids = [provider_booking_id]

        return self.build_booking_slots(
            booking_id,
            slots,
            customer_id,
            lambda i: str(slot_ids[i]) if i < len(slot_ids) else "",
            provider_course_membership_id,
        )

    def get_booking_name_change_options(self, details: NameChangeDetails) -> dict[str, Any]:
        return {}

    # Sales data

    def get_sales_data_options(
        self, booking: dict[str, Any], booking_details: BookingDetails
    ) -> dict[str, Any]:
        return {}

    async def add_sales_data(self, options: dict[str, Any]) -> None:
        pass

    # Customers

    async def create_customer(
        self, token: str, course_id: str, customer_data: dict[str, Any]
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.facility_url}/customer",
            operation="createCustomer",
            action="creating customer",
            details={"customer_data": customer_data},
            headers=self._headers(token),
            params={"type": "BaseCustomer"},
            json=customer_data,
        )
        return response.json()

    async def get_customer(
        self, token: str, course_id: str, buyer: BuyerData
    ) -> dict[str, Any] | None:
        # The customer endpoint upserts by email, so a lookup is a POST.
        first_name, last_name = buyer.split_name()
        response = await self._request(
            "POST",
            f"{self.facility_url}/customer",
            operation="getCustomer",
            action="fetching customer",
            details={"email": buyer.email},
            headers=self._headers(token),
            params={"type": "BaseCustomer"},
            json={
                "FirstName": first_name,
                "LastName": last_name,
                "Phone": buyer.phone,
                "EmailAddress": buyer.email,
            },
        )
        customer = response.json()
        return customer or None

    def get_customer_creation_data(
        self, buyer: BuyerData, account_number: int | None = None
    ) -> dict[str, Any]:
        first_name, last_name = buyer.split_name()
        return {
            "EmailAddress": buyer.email,
            "FirstName": first_name or "guest",
            "LastName": last_name or "N/A",
            "Phone": buyer.phone,
            "PostalCode": buyer.zipcode,
        }

    def get_customer_id(self, customer: dict[str, Any]) -> str:
        return str(customer["Id"])

    def get_customer_id_from_get_customer_response(
        self, customer: dict[str, Any]
    ) -> dict[str, Any]:
        return {"customer_id": str(customer["Id"])}

    # Capabilities

    def should_add_sale_data(self) -> bool:
        return False

    def supports_player_name_change(self) -> bool:
        return False

    def require_to_create_player_slots(self) -> bool:
        return False
