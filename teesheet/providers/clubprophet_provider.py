import json
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
)

logger = logging.getLogger(__name__)

MAX_FIRST_HAND_SPOTS = 4


class ClubProphetConfiguration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_type: str = Field(default="application/json", alias="CONTENT_TYPE")
    client_id: str = Field(default="", alias="CLIENT_ID")
    client_secret: str = Field(default="", alias="CLIENT_SECRET")
    api_key: str = Field(default="", alias="API_KEY")
    token_endpoint: str = Field(default="", alias="TOKEN_ENDPOINT")
    teesheet_endpoint: str = Field(default="", alias="TEESHEET_ENDPOINT")
    component_id: str = Field(default="", alias="X_Component_Id")
    psk_user_id: int = Field(default=0, alias="PSK_USER_ID")
    terminal_id: int = Field(default=0, alias="TERMINAL_ID")
    booking_type_id: int = Field(default=0, alias="BOOKING_TYPE_ID")
    rate_code: str | None = Field(default=None, alias="RATE_CODE")


def fee_holes(tee_time: dict[str, Any]) -> int:
    """
    Pick which of the 18- or 9-hole fee columns prices a tee time.

    Falls back to 18 when neither green fee is set, which then reads a zero
    greenFee18. Kept as the provider integration has always behaved.
    """
    if tee_time.get("greenFee18"):
        return 18
    if tee_time.get("greenFee9"):
        return 9
    return 18


class ClubProphetProvider(TeeSheetProvider):
    """
    ClubProphet third-party tee sheet API.

    Tokens come from a client-credential exchange at TOKEN_ENDPOINT, which
    also serves as the API base. ClubProphet has no customer resource; the
    buyer's contact details travel with each reservation.
    """

    provider_id = "club-prophet"
    log_name = "ClubProphet"
    configuration_model = ClubProphetConfiguration

    configuration: ClubProphetConfiguration

    @property
    def base_url(self) -> str:
        return self.configuration.token_endpoint.rstrip("/")

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Content-Type": self.configuration.content_type,
            "Authorization": f"bearer {token}",
            "client-secret": self.configuration.client_secret,
            "client-id": self.configuration.client_id,
            "X-componentid": self.configuration.component_id,
        }

    async def _fetch_token(self) -> tuple[str, str | None]:
        response = await self._request(
            "POST",
            self.configuration.token_endpoint,
            operation="getToken",
            action="fetching token",
            refresh_on_auth_failure=False,
            headers={"Content-Type": self.configuration.content_type},
            json={
                "client_id": self.configuration.client_id,
                "client_secret": self.configuration.client_secret,
                "apikey": self.configuration.api_key,
            },
        )
        token = response.json().get("access_token")
        if not token:
            raise ProviderDataError("Error fetching token: access_token not found in response")
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
        # The tee sheet endpoint takes its filter as a JSON body on a GET.
        body = {
            "fromDate": f"{date}T00:00:04.192Z",
            "toDate": f"{date}T23:59:04.192Z",
            "courseId": course_id,
            "rateCode": self.configuration.rate_code or "string",
        }
        response = await self._request(
            "GET",
            self.configuration.teesheet_endpoint,
            operation="getTeeTimes",
            action="fetching tee times",
            details={"course_id": course_id, "date": date},
            headers=self._headers(token),
            content=json.dumps(body),
        )
        return response.json() or []

    def get_provider_tee_time_id(self, tee_time: dict[str, Any]) -> str:
        return str(tee_time["teeSheetId"])

    def to_projection(
        self, tee_time: dict[str, Any], course_id: str, existing: TeeTime | None = None
    ) -> TeeTimeProjection:
        start_time = tee_time["startTime"]
        hours, minutes = start_time.split("T")[1].split(":")[:2]
        holes = fee_holes(tee_time)

        if tee_time.get("is18HoleOnly"):
            number_of_holes = 18
        elif tee_time.get("is9HoleOnly"):
            number_of_holes = 9
        else:
            number_of_holes = 18

        return TeeTimeProjection(
            provider_tee_time_id=self.get_provider_tee_time_id(tee_time),
            course_id=course_id,
            number_of_holes=number_of_holes,
            date=datetime.fromisoformat(start_time),
            time=int(hours) * 100 + int(minutes),
            max_players_per_booking=tee_time["freeSlots"],
            available_first_hand_spots=self.get_available_spots_on_tee_time(tee_time),
            green_fee_per_player=dollars_to_cents(tee_time.get(f"greenFee{holes}")),
            cart_fee_per_player=dollars_to_cents(tee_time.get(f"cartFee{holes}")),
            green_fee_tax_per_player=existing.green_fee_tax_per_player if existing else 0,
            cart_fee_tax_per_player=existing.cart_fee_tax_per_player if existing else 0,
            provider_date=start_time,
        )

    def get_available_spots_on_tee_time(self, tee_time: dict[str, Any]) -> int:
        return max(min(int(tee_time["freeSlots"]), MAX_FIRST_HAND_SPOTS), 0)

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
            f"{self.base_url}/thirdpartyapi/api/v1/TeeSheet/BookReservation",
            operation="createBooking",
            action="creating booking",
            user_id=user_id,
            details={"data": data},
            headers=self._headers(token),
            json=data,
        )
        booking = response.json()
        if not booking.get("success"):
            await self.error_logger.error_log(
                url=f"/{self.log_name}/createBooking",
                message="ERROR_CREATING_BOOKING",
                user_id=user_id,
                additional_details={"data": data, "response": booking},
            )
            raise ProviderDataError(f"Error creating booking: {booking.get('responseText')}")
        return booking

    async def delete_booking(
        self, token: str, course_id: str, tee_sheet_id: str, booking_id: str
    ) -> None:
        try:
            await self._request(
                "POST",
                f"{self.base_url}/thirdpartyapi/api/v1/TeeSheet/CancelReservation",
                operation="deleteBooking",
                action="deleting booking",
                details={"booking_id": booking_id},
                headers=self._headers(token),
                json={"reservationId": booking_id},
            )
        except ProviderRequestError:
            if await self.check_booking_is_cancelled(token, course_id, tee_sheet_id, booking_id):
                logger.info(f"ClubProphet reservation {booking_id} was already cancelled")
                return
            raise
        logger.info(f"Booking deleted successfully: {booking_id}")

    async def check_booking_is_cancelled(
        self, token: str, course_id: str, tee_sheet_id: str, provider_booking_id: str
    ) -> bool:
        response = await self.client.get(
            f"{self.base_url}/thirdpartyapi/api/v1/TeeSheet/Reservation/{provider_booking_id}",
            headers=self._headers(token),
        )
        if not response.is_success:
            return False
        return bool(response.json().get("isCancelled"))

    async def update_tee_time(
        self,
        token: str,
        course_id: str,
        tee_sheet_id: str,
        booking_id: str,
        options: dict[str, Any],
        slot_id: str | None = None,
    ) -> dict[str, Any]:
        raise ProviderError("ClubProphet does not support player name changes")

    def get_booking_creation_data(self, tee_time_data: TeeTimeBookingData) -> dict[str, Any]:
        buyer = tee_time_data.buyer
        first_name, last_name = buyer.split_name() if buyer else ("", "")
        price = cents_to_dollars(tee_time_data.green_fees + tee_time_data.cart_fees)
        return {
            "teeSheetId": int(tee_time_data.provider_tee_time_id),
            "holes": tee_time_data.holes,
            "firstName": first_name or "Guest",
            "lastName": last_name or "N/A",
            "email": buyer.email if buyer else "",
            "phone": buyer.phone if buyer else "",
            "players": tee_time_data.player_count,
            "notes": tee_time_data.notes,
            "pskUserId": self.configuration.psk_user_id,
            "terminalId": self.configuration.terminal_id,
            "bookingTypeId": self.configuration.booking_type_id,
            "rateCode": tee_time_data.rate_code or self.configuration.rate_code or "",
            "price": [price] * tee_time_data.player_count,
        }

    def get_booking_id(self, booking: dict[str, Any]) -> str:
        return str(booking["reservationId"])

    def get_player_count(self, booking: dict[str, Any]) -> int:
        return len(booking.get("participantIds") or [])

    def get_slot_ids_from_booking(self, booking: dict[str, Any]) -> list[str]:
        return [str(participant_id) for participant_id in booking.get("participantIds") or []]

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
        return customer_data

    async def get_customer(
        self, token: str, course_id: str, buyer: BuyerData
    ) -> dict[str, Any] | None:
        return None

    def get_customer_creation_data(
        self, buyer: BuyerData, account_number: int | None = None
    ) -> dict[str, Any]:
        first_name, last_name = buyer.split_name()
        return {
            "firstName": first_name,
            "lastName": last_name,
            "email": buyer.email,
            "phone": buyer.phone,
        }

    def get_customer_id(self, customer: dict[str, Any]) -> str:
        return customer["email"]

    def get_customer_id_from_get_customer_response(
        self, customer: dict[str, Any]
    ) -> dict[str, Any]:
        return {"customer_id": customer["email"]}

    # Capabilities

    def should_add_sale_data(self) -> bool:
        return False

    def supports_player_name_change(self) -> bool:
        return False

    def require_to_create_player_slots(self) -> bool:
        return True
