from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from teesheet.models.schemas import (
    NameChangeDetails,
    ReservationResult,
    ReserveBookingRequest,
)
from teesheet.providers.base import ProviderError, TeeTimeUnavailableError
from teesheet.services.booking_service import booking_service

router = APIRouter(prefix="/bookings", tags=["bookings"])


class CancelBookingResponse(BaseModel):
    link_id: str
    provider_booking_id: str
    cancelled: bool = True


class ChangePlayerNameRequest(BaseModel):
    slot_id: str
    name: str
    customer_id: str = ""


@router.post("/reserve", response_model=ReservationResult)
async def reserve_booking(request: ReserveBookingRequest) -> ReservationResult:
    try:
        return await booking_service.reserve_booking(request)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TeeTimeUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/{link_id}/{provider_booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(link_id: str, provider_booking_id: str) -> CancelBookingResponse:
    try:
        await booking_service.cancel_booking(link_id, provider_booking_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return CancelBookingResponse(link_id=link_id, provider_booking_id=provider_booking_id)


@router.post("/{link_id}/{provider_booking_id}/player-name")
async def change_player_name(
    link_id: str, provider_booking_id: str, request: ChangePlayerNameRequest
) -> dict:
    try:
        return await booking_service.change_player_name(
            link_id,
            provider_booking_id,
            request.slot_id,
            NameChangeDetails(name=request.name, customer_id=request.customer_id),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
