from .actions import ReservationService, user_directory_resolver
from .conflict import has_overlap, intervals_overlap
from .errors import (
	EmptyAfterSanitization,
	Forbidden,
	InvalidPayload,
	InvalidStep,
	InvalidTimeFormat,
	NotFound,
	ReservationError,
	ReservationStorageError,
	SlotConflict,
	TooManyRequests,
	TransactionTimeoutError,
	Unauthenticated,
	ValidationIssue,
)
from .layout import LaneAssignment, assign_lanes
from .models import ROLE_ADMIN, ROLE_USER, Actor, ReservationDetails, ReservationRecord, Room, UserAccount
from .settings import Settings, get_settings, load_settings
from .time_slots import TimeSlot, generate_slots, is_aligned_to_step, is_weekend, parse_time
from .validation import (
	ReservationInput,
	SanitizedReservation,
	parse_reservation_input,
	sanitize_reservation_input,
	sanitize_text,
	validate_reservation_input,
)
from .yaml_store import ReservationTransaction, ReservationYamlRepository

__all__ = [
	"ReservationService",
	"user_directory_resolver",
	"has_overlap",
	"intervals_overlap",
	"EmptyAfterSanitization",
	"Forbidden",
	"InvalidPayload",
	"InvalidStep",
	"InvalidTimeFormat",
	"NotFound",
	"ReservationError",
	"ReservationStorageError",
	"SlotConflict",
	"TooManyRequests",
	"TransactionTimeoutError",
	"Unauthenticated",
	"ValidationIssue",
	"LaneAssignment",
	"assign_lanes",
	"ROLE_ADMIN",
	"ROLE_USER",
	"Actor",
	"ReservationDetails",
	"ReservationRecord",
	"Room",
	"UserAccount",
	"Settings",
	"get_settings",
	"load_settings",
	"TimeSlot",
	"generate_slots",
	"is_aligned_to_step",
	"is_weekend",
	"parse_time",
	"ReservationInput",
	"SanitizedReservation",
	"parse_reservation_input",
	"sanitize_reservation_input",
	"sanitize_text",
	"validate_reservation_input",
	"ReservationTransaction",
	"ReservationYamlRepository",
]
