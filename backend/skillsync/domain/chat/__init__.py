"""Chat domain exports."""

from .service import get_direct_room, get_service, history, list_direct_rooms, open_direct_room, send_direct_message

__all__ = [
	"get_direct_room",
	"get_service",
	"history",
	"list_direct_rooms",
	"open_direct_room",
	"send_direct_message",
]
