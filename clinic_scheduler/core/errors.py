"""Scheduling errors and the stable rejection reasons they carry."""

from enum import Enum


class RejectionReason(str, Enum):
    INVALID_INPUT = 'invalid_input'
    INVALID_TIME_RANGE = 'invalid_time_range'
    OUTSIDE_AVAILABILITY = 'outside_availability'
    SLOT_ALREADY_BOOKED = 'slot_already_booked'
    IN_THE_PAST = 'in_the_past'
    INSUFFICIENT_NOTICE = 'insufficient_notice'
    INSUFFICIENT_LEAD_TIME = 'insufficient_lead_time'
    PATIENT_CONFLICT = 'patient_conflict'
    NOT_MODIFIABLE = 'not_modifiable'
    REASON_REQUIRED = 'reason_required'
    INVALID_TRANSITION = 'invalid_transition'
    CONSULTATION_REQUIRED = 'consultation_required'
    END_NOT_AFTER_START = 'end_not_after_start'
    WINDOW_OVERLAP = 'window_overlap'
    NOT_FOUND = 'not_found'
    FORBIDDEN = 'forbidden'


DEFAULT_MESSAGES = {
    RejectionReason.INVALID_INPUT: 'Invalid input.',
    RejectionReason.INVALID_TIME_RANGE: 'Invalid time range.',
    RejectionReason.OUTSIDE_AVAILABILITY: "Selected time is outside the doctor's availability.",
    RejectionReason.SLOT_ALREADY_BOOKED: 'Time slot already booked.',
    RejectionReason.IN_THE_PAST: 'Appointments cannot be moved into the past.',
    RejectionReason.INSUFFICIENT_NOTICE: 'Reschedules must be at least 3 days in advance.',
    RejectionReason.INSUFFICIENT_LEAD_TIME: 'Appointments must be booked at least 3 days in advance.',
    RejectionReason.PATIENT_CONFLICT: 'You already booked another appointment for this time.',
    RejectionReason.NOT_MODIFIABLE: 'This appointment can no longer be modified.',
    RejectionReason.REASON_REQUIRED: 'A reason is required when moving an appointment.',
    RejectionReason.INVALID_TRANSITION: 'This status change is not allowed.',
    RejectionReason.CONSULTATION_REQUIRED: 'Record a consultation before completing this appointment.',
    RejectionReason.END_NOT_AFTER_START: 'End time must be after start time.',
    RejectionReason.WINDOW_OVERLAP: 'Schedule overlaps with an existing duty hour.',
    RejectionReason.NOT_FOUND: 'Not found.',
    RejectionReason.FORBIDDEN: 'You are not allowed to do this.',
}


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    def __init__(self, reason: RejectionReason, message: str | None = None):
        self.reason = reason
        self.message = message or DEFAULT_MESSAGES[reason]
        super().__init__(self.message)

    def as_detail(self) -> dict:
        return {'reason': self.reason.value, 'message': self.message}


class InvalidInput(SchedulingError):
    """Raised for malformed dates, times or missing fields, before any store access."""

    def __init__(self, message: str | None = None):
        super().__init__(RejectionReason.INVALID_INPUT, message)


class BookingRejected(SchedulingError):
    """Raised when a scheduling policy check fails."""


class NotFound(SchedulingError):
    def __init__(self, message: str | None = None):
        super().__init__(RejectionReason.NOT_FOUND, message)


class PermissionDenied(SchedulingError):
    def __init__(self, message: str | None = None):
        super().__init__(RejectionReason.FORBIDDEN, message)
