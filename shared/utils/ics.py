"""
shared/utils/ics.py
iCalendar export for confirmed bookings.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from icalendar import Calendar, Event

from config.settings import settings
from shared.models.models import Booking
from shared.utils.constants import AGE_GROUPS, COMPETITION_TYPE_LABELS, MATCH_FORMAT_LABELS

PRODID = "-//Whistle Connect//NONSGML v1.0//EN"
UID_DOMAIN = "whistle-connect.com"


def _label(labels: dict, value) -> str:
    value = getattr(value, "value", value)
    return labels.get(value, value)


def booking_summary(booking: Booking) -> str:
    if booking.home_team and booking.away_team:
        return f"Match Official - {booking.home_team} vs {booking.away_team}"
    return "Match Official"


def booking_location(booking: Booking) -> str:
    parts = [booking.address_text, booking.ground_name, booking.location_postcode]
    return ", ".join(p for p in parts if p)


def booking_description(booking: Booking) -> str:
    parts = []
    if booking.age_group:
        parts.append(f"Age Group: {_label(AGE_GROUPS, booking.age_group)}")
    if booking.format:
        parts.append(f"Format: {_label(MATCH_FORMAT_LABELS, booking.format)}")
    if booking.competition_type:
        parts.append(f"Competition: {_label(COMPETITION_TYPE_LABELS, booking.competition_type)}")
    if booking.notes:
        parts.append(f"Notes: {booking.notes}")
    return "\n".join(parts)


def match_window(booking: Booking) -> tuple[datetime, datetime]:
    """Kickoff and final whistle in UTC. Kickoff is local to MATCH_TIMEZONE."""
    local = datetime.combine(booking.match_date, booking.kickoff_time).replace(
        tzinfo=ZoneInfo(settings.MATCH_TIMEZONE)
    )
    start = local.astimezone(timezone.utc)
    return start, start + timedelta(hours=settings.MATCH_DURATION_HOURS)


def build_booking_ics(booking: Booking) -> bytes:
    """Serialize a single-event VCALENDAR for the booking."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")

    start, end = match_window(booking)
    event = Event()
    event.add("uid", f"{booking.id}@{UID_DOMAIN}")
    event.add("dtstamp", datetime.now(timezone.utc))
    event.add("dtstart", start)
    event.add("dtend", end)
    event.add("summary", booking_summary(booking))

    location = booking_location(booking)
    if location:
        event.add("location", location)
    description = booking_description(booking)
    if description:
        event.add("description", description)
    event.add("status", "CONFIRMED")
    cal.add_component(event)

    return cal.to_ical()


def ics_filename(booking: Booking) -> str:
    return f"match-booking-{booking.id}.ics"
