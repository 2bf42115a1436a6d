from datetime import date, datetime, time, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# --- Enums ---

class ProviderKind(str, Enum):
    GUIDE = 'guide'
    DRIVER = 'driver'
    VEHICLE = 'vehicle'

class ProviderStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    INACTIVE = 'inactive'
    BLACKLISTED = 'blacklisted'

class BookingStatus(str, Enum):
    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    DELAYED = 'delayed'
    NO_SHOW = 'no_show'

class Weekday(str, Enum):
    MONDAY = 'monday'
    TUESDAY = 'tuesday'
    WEDNESDAY = 'wednesday'
    THURSDAY = 'thursday'
    FRIDAY = 'friday'
    SATURDAY = 'saturday'
    SUNDAY = 'sunday'

class VerificationFlag(str, Enum):
    IDENTITY = 'identity'
    LICENSE = 'license'
    BACKGROUND_CHECK = 'background_check'
    INSURANCE = 'insurance'
    CREDENTIAL = 'credential'

class RecurrencePattern(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    YEARLY = 'yearly'

class AvailabilityResult(str, Enum):
    AVAILABLE = 'AVAILABLE'
    PAST_DATE = 'PAST_DATE'
    INSUFFICIENT_NOTICE = 'INSUFFICIENT_NOTICE'
    OUT_OF_WINDOW = 'OUT_OF_WINDOW'
    NON_WORKING_DAY = 'NON_WORKING_DAY'
    BLOCKED = 'BLOCKED'
    OUTSIDE_HOURS = 'OUTSIDE_HOURS'

class ConflictResult(str, Enum):
    NO_CONFLICT = 'NO_CONFLICT'
    OVERLAPPING_BOOKING = 'OVERLAPPING_BOOKING'
    DAY_FULL = 'DAY_FULL'

class AssignmentReason(str, Enum):
    """Reason codes reported by AssignmentService.assign."""
    ASSIGNED = 'ASSIGNED'
    # Availability
    PAST_DATE = 'PAST_DATE'
    INSUFFICIENT_NOTICE = 'INSUFFICIENT_NOTICE'
    OUT_OF_WINDOW = 'OUT_OF_WINDOW'
    NON_WORKING_DAY = 'NON_WORKING_DAY'
    BLOCKED = 'BLOCKED'
    OUTSIDE_HOURS = 'OUTSIDE_HOURS'
    # Conflicts
    OVERLAPPING_BOOKING = 'OVERLAPPING_BOOKING'
    DAY_FULL = 'DAY_FULL'
    # Eligibility and booking state
    PROVIDER_NOT_ELIGIBLE = 'PROVIDER_NOT_ELIGIBLE'
    OUTSIDE_SERVICE_AREA = 'OUTSIDE_SERVICE_AREA'
    BOOKING_NOT_ASSIGNABLE = 'BOOKING_NOT_ASSIGNABLE'
    # Lock could not be acquired in time
    RETRY = 'RETRY'


# --- Core Models ---

class TimeWindow(BaseModel):
    """A half-open [start, end) interval. Aware datetimes are normalised to naive UTC."""
    start: datetime
    end: datetime

    @field_validator('start', 'end')
    @classmethod
    def normalise_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode='after')
    def check_order(self):
        if self.start >= self.end:
            raise ValueError("window start must be before window end")
        return self

class WorkingHours(BaseModel):
    start: time = time(9, 0)
    end: time = time(17, 0)

    @model_validator(mode='after')
    def check_order(self):
        if self.start >= self.end:
            raise ValueError("working hours start must be before end")
        return self

class BlockedDate(BaseModel):
    date: date
    reason: str = 'Not available'

class RecurringBlock(BaseModel):
    """
    A block that repeats on a pattern between optional first and last dates.

    weekly blocks match any of `weekdays`, monthly blocks match `day_of_month`
    (never in months too short for it), yearly blocks match `month` and
    `day_of_month`.
    """
    pattern: RecurrencePattern
    weekdays: List[Weekday] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    starts: Optional[date] = None
    until: Optional[date] = None
    reason: str = 'Not available'

    @model_validator(mode='after')
    def check_pattern_fields(self):
        if self.pattern == RecurrencePattern.WEEKLY and not self.weekdays:
            raise ValueError("weekly blocks need at least one weekday")
        if self.pattern in (RecurrencePattern.MONTHLY, RecurrencePattern.YEARLY) and self.day_of_month is None:
            raise ValueError(f"{self.pattern.value} blocks need a day_of_month")
        if self.pattern == RecurrencePattern.YEARLY and self.month is None:
            raise ValueError("yearly blocks need a month")
        if self.starts and self.until and self.starts > self.until:
            raise ValueError("recurring block starts after it ends")
        return self

    def matches(self, day: date) -> bool:
        if self.starts and day < self.starts:
            return False
        if self.until and day > self.until:
            return False
        if self.pattern == RecurrencePattern.DAILY:
            return True
        if self.pattern == RecurrencePattern.WEEKLY:
            return list(Weekday)[day.weekday()] in self.weekdays
        if self.pattern == RecurrencePattern.MONTHLY:
            return day.day == self.day_of_month
        return day.month == self.month and day.day == self.day_of_month

class AvailabilityPolicy(BaseModel):
    """The rules governing when a provider may be booked."""
    working_days: List[Weekday] = Field(default_factory=lambda: list(Weekday))
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    blocked_dates: List[BlockedDate] = Field(default_factory=list)
    recurring_blocks: List[RecurringBlock] = Field(default_factory=list)
    max_bookings_per_day: int = Field(default=3, gt=0)
    advance_booking_days: int = Field(default=30, ge=0)
    minimum_notice_hours: int = Field(default=0, ge=0)

    @field_validator('blocked_dates')
    @classmethod
    def unique_blocked_dates(cls, v: List[BlockedDate]) -> List[BlockedDate]:
        seen = set()
        for blocked in v:
            if blocked.date in seen:
                raise ValueError(f"blocked date {blocked.date} listed more than once")
            seen.add(blocked.date)
        return v

    @property
    def blocked_date_set(self) -> set:
        return {blocked.date for blocked in self.blocked_dates}

class Location(BaseModel):
    city: str
    district: str

class ServiceArea(BaseModel):
    city: str
    district: str
    radius_km: float = Field(default=50, gt=0)
    is_active: bool = True

class Verification(BaseModel):
    identity: bool = False
    license: bool = False
    background_check: bool = False
    insurance: bool = False
    credential: bool = False

    def is_set(self, flag: VerificationFlag) -> bool:
        return getattr(self, flag.value)

class StatusHistoryEntry(BaseModel):
    """One immutable row of a record's status history."""
    status: str
    timestamp: datetime
    actor_id: str
    reason: Optional[str] = None
    notes: Optional[str] = None

class ProviderProfile(BaseModel):
    """A bookable guide, driver or vehicle."""
    id: int
    owner_user_id: str
    kind: ProviderKind
    status: ProviderStatus = ProviderStatus.PENDING
    verification: Verification = Field(default_factory=Verification)
    availability_policy: AvailabilityPolicy = Field(default_factory=AvailabilityPolicy)
    service_areas: List[ServiceArea] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)

class Booking(BaseModel):
    """A trip or tour booking, optionally assigned to a provider."""
    id: int
    provider_id: Optional[int] = None
    requester_id: str
    status: BookingStatus = BookingStatus.SCHEDULED
    window: TimeWindow
    location: Optional[Location] = None
    notes: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)


# --- Engine Results ---

class AvailabilityCheck(BaseModel):
    """Outcome of evaluating a window against a policy and existing bookings."""
    result: Union[AvailabilityResult, ConflictResult]
    reason: str
    available: bool

class AssignmentOutcome(BaseModel):
    success: bool
    reason: AssignmentReason
    message: str
    booking_id: int
    provider_id: int
    booking_status: Optional[BookingStatus] = None
    already_assigned: bool = False
    unmet_conditions: List[str] = Field(default_factory=list)
