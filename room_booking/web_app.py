from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

from flask import Flask, jsonify, request

from .actions import ReservationService, user_directory_resolver
from .errors import InvalidPayload, ReservationError, ReservationStorageError, TooManyRequests
from .layout import assign_lanes, display_title, secondary_label
from .logging_config import configure_logging
from .models import Actor
from .rate_limit import RateLimiter
from .request_ip import client_ip
from .rooms import sort_rooms_by_display_order
from .settings import Settings, get_settings
from .time_slots import combine_date_and_time, generate_slots
from .yaml_store import ReservationYamlRepository

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: Settings | None = None,
    rate_limiter: RateLimiter | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or get_settings()
    repository = ReservationYamlRepository(data_dir or settings.data_dir, lock_timeout=settings.lock_timeout_seconds)
    directory = user_directory_resolver(repository)

    def resolve_request_actor(explicit_user_id: str | None) -> Actor | None:
        return directory(explicit_user_id or request.headers.get(USER_HEADER))

    service = ReservationService(
        repository,
        settings=settings,
        rate_limiter=rate_limiter,
        actor_resolver=resolve_request_actor,
        clock=now_provider,
    )
    app.extensions["reservation_service"] = service
    zone = settings.zone

    def _caller_ip() -> str:
        return client_ip(request.headers, request.remote_addr)

    def _payload() -> dict[str, Any]:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{USER_HEADER}"
        return response

    @app.errorhandler(ReservationError)
    def handle_reservation_error(error: ReservationError) -> Any:
        body: dict[str, Any] = {"ok": False, "code": error.code, "message": error.message}
        if isinstance(error, InvalidPayload) and error.issues:
            body["issues"] = [
                {"code": issue.code, "field": issue.field, "message": issue.message} for issue in error.issues
            ]
        response = jsonify(body)
        response.status_code = error.status_code
        if isinstance(error, TooManyRequests):
            response.headers["Retry-After"] = str(error.retry_after)
        return response

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        logger.error("Reservation store failure: %s", error)
        return jsonify({"ok": False, "code": "store_unavailable", "message": "The reservation store is busy, please retry."}), 503

    @app.get("/api/rooms")
    def list_rooms() -> Any:
        rooms = sort_rooms_by_display_order(repository.get_rooms())
        return jsonify({"ok": True, "rooms": [room.to_dict() for room in rooms]})

    @app.get("/api/slots")
    def list_slots() -> Any:
        day = _parse_day(request.args.get("date"))
        if day is None:
            return jsonify({"ok": False, "message": "date parameter must use YYYY-MM-DD"}), 400
        slots = generate_slots(day, zone=zone, settings=settings)
        return jsonify({"ok": True, "date": day.isoformat(), "slots": [slot.to_dict(zone) for slot in slots]})

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        try:
            start = _parse_bound(request.args.get("start"), zone)
            end = _parse_bound(request.args.get("end"), zone)
        except ValueError:
            return jsonify({"ok": False, "message": "start and end must be ISO dates or timestamps"}), 400
        if start is None or end is None:
            return jsonify({"ok": False, "message": "start and end parameters are required"}), 400

        room_id = request.args.get("room_id") or request.args.get("roomId")
        records = repository.list_reservations(start, end, room_id=room_id or None)
        return jsonify({"ok": True, "reservations": [record.to_dict() for record in records]})

    @app.get("/api/rooms/<room_id>/schedule")
    def room_schedule(room_id: str) -> Any:
        day = _parse_day(request.args.get("date"))
        if day is None:
            return jsonify({"ok": False, "message": "date parameter must use YYYY-MM-DD"}), 400
        room = repository.get_room(room_id)
        if room is None:
            return jsonify({"ok": False, "message": "Room not found."}), 404

        window_start = combine_date_and_time(day, "00:00", zone)
        window_end = combine_date_and_time(day + timedelta(days=1), "00:00", zone)
        reservations = repository.list_reservations(window_start, window_end, room_id=room_id)

        rows = []
        for placed in assign_lanes(reservations):
            record = placed.reservation.reservation
            rows.append(
                {
                    **placed.reservation.to_dict(),
                    "lane": placed.lane,
                    "lane_count": placed.lane_count,
                    "display_title": display_title(record.title, record.objective, record.participant_group),
                    "secondary_label": secondary_label(record.objective, record.participant_group),
                }
            )

        return jsonify(
            {
                "ok": True,
                "room": room.to_dict(),
                "date": day.isoformat(),
                "slots": [slot.to_dict(zone) for slot in generate_slots(day, zone=zone, settings=settings)],
                "reservations": rows,
            }
        )

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        created = service.create_reservation(_payload(), ip_address=_caller_ip())
        return jsonify({"ok": True, "reservation": created.to_dict()}), 201

    @app.put("/api/reservations/<reservation_id>")
    def update_reservation(reservation_id: str) -> Any:
        updated = service.update_reservation(reservation_id, _payload(), ip_address=_caller_ip())
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.delete("/api/reservations/<reservation_id>")
    def delete_reservation(reservation_id: str) -> Any:
        removed_id = service.delete_reservation(reservation_id, ip_address=_caller_ip())
        return jsonify({"ok": True, "id": removed_id})

    return app


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def _parse_bound(value: str | None, zone: ZoneInfo) -> datetime | None:
    if value is None or not value.strip():
        return None
    text = value.strip()
    if len(text) == 10:
        return combine_date_and_time(text, "00:00", zone)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    app = create_app()
    service = app.extensions["reservation_service"]
    if not service.repository.get_rooms():
        service.repository.seed_rooms()
    app.run(host="127.0.0.1", port=5000, debug=False)
