import logging
import random
import traceback
from typing import Any

from teesheet.models.schemas import (
    BookingDetails,
    BuyerData,
    CustomerRef,
    NameChangeDetails,
    ProviderCourseLink,
    ReservationResult,
    ReserveBookingRequest,
    TeeTimeBookingData,
)
from teesheet.providers.base import TeeSheetProvider, TeeTimeUnavailableError
from teesheet.services.database_service import database_service
from teesheet.services.error_log_service import error_log_service
from teesheet.services.provider_service import provider_service

logger = logging.getLogger(__name__)


class BookingService:
    """
    Drives reservations through a course's provider.

    Reserving is a fixed sequence with no compensation: a failure part way
    through is logged and re-raised, leaving whatever the provider already
    accepted in place.
    """

    async def _get_link(self, link_id: str) -> ProviderCourseLink:
        link = await database_service.get_provider_course_link(link_id)
        if not link:
            raise ValueError(f"Provider course link {link_id} not found")
        return link

    async def find_or_create_customer(
        self,
        provider: TeeSheetProvider,
        token: str,
        link: ProviderCourseLink,
        buyer: BuyerData,
    ) -> CustomerRef:
        """
        Resolve the buyer's customer record at the provider.

        Checks the stored link first, then the provider's own lookup, and
        only creates a customer when both miss. The result is stored so the
        next booking for this buyer at this course skips the provider.
        """
        existing = await database_service.get_user_provider_course_link(
            buyer.user_id, link.provider_id, link.course_id
        )
        if existing:
            return existing

        try:
            found = await provider.get_customer(token, link.provider_course_id, buyer)
        except Exception as e:
            logger.warning(f"Customer lookup failed for user {buyer.user_id}: {e}")
            await error_log_service.error_log(
                url="/BookingService/findOrCreateCustomer",
                message="ERROR_GETTING_CUSTOMER",
                user_id=buyer.user_id,
                additional_details={"link_id": link.id, "error": str(e)},
            )
            found = None

        if found:
            ids = provider.get_customer_id_from_get_customer_response(found)
            customer = CustomerRef(
                customer_id=ids["customer_id"], account_number=ids.get("account_number")
            )
        else:
            account_number = random.randint(10000, 99999)
            customer_data = provider.get_customer_creation_data(buyer, account_number)
            created = await provider.create_customer(token, link.provider_course_id, customer_data)
            customer = CustomerRef(
                customer_id=provider.get_customer_id(created), account_number=account_number
            )
            logger.info(f"Created {link.provider_id} customer {customer.customer_id}")

        await database_service.save_user_provider_course_link(
            buyer.user_id, link.provider_id, link.course_id, customer
        )
        return customer

    async def reserve_booking(self, request: ReserveBookingRequest) -> ReservationResult:
        link = await self._get_link(request.link_id)
        tee_time = await database_service.get_tee_time(request.tee_time_id)
        if not tee_time or tee_time.course_id != link.course_id:
            raise ValueError(f"Tee time {request.tee_time_id} not found")

        provider, token = await provider_service.get_provider_and_key(link)

        try:
            # Re-sync the row so fees and spots are what the provider has now.
            index_error = await provider.index_tee_time(
                tee_time.provider_date[:10],
                link.provider_course_id,
                link.provider_tee_sheet_id,
                token,
                tee_time.time,
                tee_time.id,
            )
            if index_error:
                raise TeeTimeUnavailableError(index_error.message)
            tee_time = await database_service.get_tee_time(tee_time.id) or tee_time
            if tee_time.available_first_hand_spots < request.player_count:
                raise TeeTimeUnavailableError(
                    f"Only {tee_time.available_first_hand_spots} spots left on tee time {tee_time.id}"
                )

            customer = await self.find_or_create_customer(provider, token, link, request.buyer)

            data = provider.get_booking_creation_data(
                TeeTimeBookingData(
                    tee_time_id=tee_time.id,
                    provider_tee_time_id=tee_time.provider_tee_time_id,
                    provider_course_id=link.provider_course_id,
                    provider_tee_sheet_id=link.provider_tee_sheet_id,
                    provider_customer_id=customer.customer_id,
                    provider_account_number=customer.account_number,
                    start_time=tee_time.provider_date,
                    holes=tee_time.number_of_holes,
                    player_count=request.player_count,
                    green_fees=tee_time.green_fee_per_player,
                    cart_fees=tee_time.cart_fee_per_player,
                    notes=request.notes,
                    buyer=request.buyer,
                )
            )
            booking = await provider.create_booking(
                token,
                link.provider_course_id,
                link.provider_tee_sheet_id,
                data,
                request.buyer.user_id,
            )
            provider_booking_id = provider.get_booking_id(booking)
            logger.info(
                f"Created {link.provider_id} booking {provider_booking_id} for {request.booking_id}"
            )

            slots = []
            if provider.require_to_create_player_slots():
                slots = provider.get_slot_ids_for_booking(
                    request.booking_id,
                    request.player_count,
                    customer.customer_id,
                    provider_booking_id,
                    link.provider_id,
                    link.course_id,
                    provider.get_slot_ids_from_booking(booking) or None,
                    request.provider_course_membership_id,
                )
                slots = await database_service.create_booking_slots(slots)

            sales_data_added = False
            if provider.should_add_sale_data():
                options = provider.get_sales_data_options(
                    booking,
                    BookingDetails(
                        token=token,
                        total_amount_paid=request.total_amount_paid,
                        player_count=request.player_count,
                        provider_course_id=link.provider_course_id,
                        provider_tee_sheet_id=link.provider_tee_sheet_id,
                    ),
                )
                await provider.add_sales_data(options)
                sales_data_added = True

            return ReservationResult(
                booking_id=request.booking_id,
                provider_booking_id=provider_booking_id,
                customer=customer,
                slots=slots,
                sales_data_added=sales_data_added,
            )
        except Exception as e:
            logger.exception(f"Error reserving booking {request.booking_id}: {e}")
            await error_log_service.error_log(
                url="/BookingService/reserveBooking",
                message="ERROR_RESERVING_BOOKING",
                user_id=request.buyer.user_id,
                stack_trace=traceback.format_exc(),
                additional_details={
                    "booking_id": request.booking_id,
                    "link_id": link.id,
                    "tee_time_id": request.tee_time_id,
                    "player_count": request.player_count,
                },
            )
            raise

    async def cancel_booking(self, link_id: str, provider_booking_id: str) -> None:
        link = await self._get_link(link_id)
        provider, token = await provider_service.get_provider_and_key(link)
        await provider.delete_booking(
            token, link.provider_course_id, link.provider_tee_sheet_id, provider_booking_id
        )

    async def change_player_name(
        self,
        link_id: str,
        provider_booking_id: str,
        slot_id: str,
        details: NameChangeDetails,
    ) -> dict[str, Any]:
        link = await self._get_link(link_id)
        provider, token = await provider_service.get_provider_and_key(link)
        if not provider.supports_player_name_change():
            raise ValueError(f"Provider {link.provider_id} does not support player name changes")

        options = provider.get_booking_name_change_options(details)
        return await provider.update_tee_time(
            token,
            link.provider_course_id,
            link.provider_tee_sheet_id,
            provider_booking_id,
            options,
            slot_id,
        )


booking_service = BookingService()
