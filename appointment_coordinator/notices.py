"""Wording for reminders and status-change notices."""

from dataclasses import dataclass
from datetime import datetime

from appointment_coordinator.state_machine import Actor, AppointmentStatus
from appointment_coordinator.store import ReminderEntry, StatusRecord


@dataclass(frozen=True)
class StatusNotice:
    audience: Actor
    title: str
    message: str
    action_required: bool = False


def offset_label(minutes: int) -> str:
    """Stable label for a reminder offset, e.g. 1440 -> '24_hour'."""
    if minutes % 60 == 0:
        return f"{minutes // 60}_hour"
    return f"{minutes}_minute"


def reminder_title(minutes: int) -> str:
    if minutes == 24 * 60:
        return "Appointment Tomorrow"
    if minutes == 2 * 60:
        return "Appointment in 2 Hours"
    if minutes <= 30:
        return "Appointment Starting Soon"
    return "Appointment Reminder"


def time_until_text(minutes: int) -> str:
    if minutes == 24 * 60:
        return "tomorrow"
    if minutes % (24 * 60) == 0:
        return f"in {minutes // (24 * 60)} days"
    if minutes % 60 == 0:
        hours = minutes // 60
        return "in 1 hour" if hours == 1 else f"in {hours} hours"
    return f"in {minutes} minutes"


def reminder_payload(entry: ReminderEntry, appointment_at: datetime | None) -> dict:
    """Body handed to a notification channel for one reminder."""
    when = ""
    if appointment_at is not None:
        when = f" Date: {appointment_at:%A, %B %d} at {appointment_at:%H:%M}."
    return {
        "appointment_id": entry.appointment_id,
        "reminder_id": entry.entry_id,
        "label": entry.label,
        "title": reminder_title(entry.offset_minutes),
        "message": f"Reminder: you have an appointment {time_until_text(entry.offset_minutes)}.{when}",
        "appointment_at": appointment_at.isoformat() if appointment_at else None,
        "fire_at": entry.fire_at.isoformat(),
        "action_required": entry.offset_minutes <= 30,
    }


def _with_reason(message: str, reason: str | None) -> str:
    return f"{message} Reason: {reason}" if reason else message


def describe_status_change(record: StatusRecord) -> StatusNotice | None:
    """Notice for the other party of a status change, if one is warranted.

    Patient changes notify the provider; provider and system changes notify
    the patient.
    """
    status = record.new_status
    details = record.reschedule_details

    if record.actor == Actor.PATIENT:
        if status == AppointmentStatus.CONFIRMED:
            return StatusNotice(Actor.PROVIDER, "Appointment Confirmed",
                                "Patient has confirmed their upcoming appointment.")
        if status == AppointmentStatus.DECLINED:
            return StatusNotice(Actor.PROVIDER, "Appointment Declined",
                                _with_reason("Patient has declined their appointment.", record.reason),
                                action_required=True)
        if status == AppointmentStatus.RESCHEDULE_REQUESTED:
            return StatusNotice(Actor.PROVIDER, "Reschedule Requested",
                                _with_reason("Patient has requested to reschedule their appointment.", record.reason),
                                action_required=True)
        if status == AppointmentStatus.CANCELLED:
            return StatusNotice(Actor.PROVIDER, "Appointment Cancelled",
                                _with_reason("Patient has cancelled their appointment.", record.reason))
        return None

    if status == AppointmentStatus.CONFIRMED:
        return StatusNotice(Actor.PATIENT, "Appointment Confirmed by Provider",
                            "Your healthcare provider has confirmed your appointment.")
    if status == AppointmentStatus.SCHEDULED:
        return StatusNotice(Actor.PATIENT, "Appointment Scheduled",
                            "Your appointment has been scheduled. Please confirm it.",
                            action_required=True)
    if status == AppointmentStatus.RESCHEDULED:
        message = "Your appointment has been rescheduled."
        if details:
            message = f"Your appointment has been rescheduled to {details.new_date} at {details.new_time}."
        return StatusNotice(Actor.PATIENT, "Appointment Rescheduled", message, action_required=True)
    if status == AppointmentStatus.CANCELLED:
        who = "automatically" if record.actor == Actor.SYSTEM else "by the provider"
        return StatusNotice(Actor.PATIENT, "Appointment Cancelled",
                            _with_reason(f"Your appointment has been cancelled {who}.", record.reason),
                            action_required=True)
    return None
