from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from mcp.server.fastmcp import FastMCP

from room_booking import ReservationService, ReservationYamlRepository, get_settings
from room_booking.logging_config import configure_logging
from room_booking.rooms import sort_rooms_by_display_order
from room_booking.time_slots import combine_date_and_time

mcp = FastMCP(
    "Room Booking MCP Server",
    instructions="Expose rooms and reservations from the room_booking engine.",
    json_response=True,
)

SETTINGS = get_settings()
REPOSITORY = ReservationYamlRepository(SETTINGS.data_dir, lock_timeout=SETTINGS.lock_timeout_seconds)
SERVICE = ReservationService(REPOSITORY, settings=SETTINGS)
MCP_ORIGIN = "mcp"


@mcp.resource("reservation://rooms")
async def list_rooms() -> list[dict[str, Any]]:
    """List bookable rooms in display order."""
    return [room.to_dict() for room in sort_rooms_by_display_order(REPOSITORY.get_rooms())]


@mcp.tool()
def list_reservations(day: str, room_id: str | None = None) -> list[dict[str, Any]]:
    """Return reservations for a calendar day (YYYY-MM-DD), optionally for one room."""
    start_day = date.fromisoformat(day)
    start = combine_date_and_time(start_day, "00:00", SETTINGS.zone)
    end = combine_date_and_time(start_day + timedelta(days=1), "00:00", SETTINGS.zone)
    return [record.to_dict() for record in REPOSITORY.list_reservations(start, end, room_id=room_id)]


@mcp.tool()
def create_reservation(
    user_id: str,
    room_id: str,
    day: str,
    start: str,
    end: str,
    title: str,
    objective: str,
    participant_group: str,
    note: str | None = None,
) -> dict[str, Any]:
    """Book a room for HH:MM-HH:MM on a day on behalf of a known user."""
    created = SERVICE.create_reservation(
        {
            "room_id": room_id,
            "date": day,
            "start": start,
            "end": end,
            "title": title,
            "objective": objective,
            "participant_group": participant_group,
            "note": note,
        },
        ip_address=MCP_ORIGIN,
        user_id=user_id,
    )
    return created.to_dict()


@mcp.tool()
def cancel_reservation(user_id: str, reservation_id: str) -> dict[str, str]:
    """Delete a reservation owned by the user (or any reservation for an admin)."""
    removed_id = SERVICE.delete_reservation(reservation_id, ip_address=MCP_ORIGIN, user_id=user_id)
    return {"id": removed_id}


def main() -> None:
    configure_logging(SETTINGS.log_level)
    if not REPOSITORY.get_rooms():
        REPOSITORY.seed_rooms()
    mcp.run()


if __name__ == "__main__":
    main()
