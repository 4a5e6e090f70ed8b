import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NO_LONGER_AVAILABLE_MESSAGE = (
    "We're sorry. This time is no longer available. Someone just booked this. "
    "It may take a minute for the sold time you selected to be removed. "
    "Please select another time."
)


def new_id() -> str:
    return str(uuid.uuid4())


class TeeTimeProjection(BaseModel):
    """
    The provider-owned fields of a tee time, compared by value.

    Two projections are equal exactly when every provider-influenced field
    matches. Resale inventory and local identity are not part of it, so a
    change to either never registers as provider drift.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    provider_tee_time_id: str
    course_id: str
    number_of_holes: int
    date: datetime
    time: int = Field(..., ge=0, le=2359, description="Military time, e.g. 1430")
    max_players_per_booking: int
    available_first_hand_spots: int = Field(..., ge=0)
    green_fee_per_player: int = Field(default=0, description="Cents")
    cart_fee_per_player: int = Field(default=0, description="Cents")
    green_fee_tax_per_player: int = Field(default=0, description="Cents")
    cart_fee_tax_per_player: int = Field(default=0, description="Cents")
    provider_date: str

    @classmethod
    def from_record(cls, record: Any) -> "TeeTimeProjection":
        return cls.model_validate(record)


class TeeTime(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=new_id)
    provider_tee_time_id: str
    course_id: str
    number_of_holes: int
    date: datetime
    time: int
    max_players_per_booking: int
    available_first_hand_spots: int = 0
    available_second_hand_spots: int = 0
    green_fee_per_player: int = 0
    cart_fee_per_player: int = 0
    green_fee_tax_per_player: int = 0
    cart_fee_tax_per_player: int = 0
    provider_date: str

    @classmethod
    def from_projection(
        cls, projection: TeeTimeProjection, tee_time_id: str | None = None
    ) -> "TeeTime":
        values = projection.model_dump()
        if tee_time_id:
            values["id"] = tee_time_id
        return cls(**values)

    def projection(self) -> TeeTimeProjection:
        return TeeTimeProjection.from_record(self)


class BookingSlot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=new_id)
    booking_id: str
    slotnumber: str
    name: str = ""
    customer_id: str = ""
    is_active: bool = True
    slot_position: int = Field(..., ge=1)
    provider_course_membership_id: str | None = None


class ProviderCourseLink(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=new_id)
    course_id: str
    provider_id: str = Field(..., description="Provider tag, e.g. 'fore-up'")
    provider_course_id: str
    provider_tee_sheet_id: str = ""
    provider_course_configuration: str = "{}"
    timezone: str = "America/Chicago"
    last_indexed_at: datetime | None = None
    day_last_indexed: dict[str, datetime] = Field(default_factory=dict)


class BuyerData(BaseModel):
    user_id: str
    name: str = ""
    email: str
    phone: str = ""
    zipcode: str = ""

    def split_name(self) -> tuple[str, str]:
        parts = self.name.split(" ") if self.name else []
        first_name = parts[0] if len(parts) > 0 else ""
        last_name = parts[1] if len(parts) > 1 else ""
        return first_name, last_name


class CustomerRef(BaseModel):
    customer_id: str
    account_number: int | None = None


class TeeTimeBookingData(BaseModel):
    """Provider-agnostic description of the booking to create."""

    tee_time_id: str
    provider_tee_time_id: str
    provider_course_id: str
    provider_tee_sheet_id: str = ""
    provider_customer_id: str = ""
    provider_account_number: int | None = None
    start_time: str = Field(..., description="Provider-native tee time timestamp")
    holes: int = 18
    player_count: int = Field(..., ge=1)
    green_fees: int = Field(default=0, description="Per player, in cents")
    cart_fees: int = Field(default=0, description="Per player, in cents")
    notes: str = ""
    buyer: BuyerData | None = None
    rate_code: str | None = None


class BookingDetails(BaseModel):
    token: str
    total_amount_paid: int = Field(default=0, description="Cents")
    player_count: int = 1
    provider_course_id: str = ""
    provider_tee_sheet_id: str = ""


class NameChangeDetails(BaseModel):
    name: str = ""
    customer_id: str = ""


class IndexResult(BaseModel):
    inserts: list[TeeTime] = Field(default_factory=list)
    updates: list[TeeTime] = Field(default_factory=list)
    removals: list[str] = Field(default_factory=list, description="Local ids to zero out")

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.removals)


class IndexTeeTimeError(BaseModel):
    error: bool = True
    message: str = NO_LONGER_AVAILABLE_MESSAGE


class ReserveBookingRequest(BaseModel):
    booking_id: str = Field(default_factory=new_id)
    link_id: str
    tee_time_id: str
    buyer: BuyerData
    player_count: int = Field(..., ge=1, le=4)
    notes: str = ""
    total_amount_paid: int = Field(default=0, description="Cents")
    provider_course_membership_id: str | None = None


class ReservationResult(BaseModel):
    booking_id: str
    provider_booking_id: str
    customer: CustomerRef
    slots: list[BookingSlot] = Field(default_factory=list)
    sales_data_added: bool = False


class CourseIndexResult(BaseModel):
    link_id: str
    course_id: str
    provider_id: str
    days_indexed: list[str] = Field(default_factory=list)
    days_skipped: list[str] = Field(default_factory=list)
    days_failed: list[str] = Field(default_factory=list)
    rows_written: int = 0
