import pytest

from skillsync.domain.chat.models import DirectRoomKey, room_kind
from skillsync.domain.chat.policy import ChatPolicyError, normalise_content, require_message_id, resolve_room
from skillsync.domain.identity.users import UserDirectory, UserProfile


def test_content_is_trimmed():
    assert normalise_content("  hi there \n") == "hi there"


@pytest.mark.parametrize("raw", ["", "   ", None, 42])
def test_empty_or_non_text_content_is_rejected(raw):
    with pytest.raises(ChatPolicyError) as exc:
        normalise_content(raw)
    assert exc.value.code == "empty_content"
    assert exc.value.status_code == 400


def test_content_over_limit_is_rejected():
    with pytest.raises(ChatPolicyError) as exc:
        normalise_content("x" * 11, max_length=10)
    assert exc.value.code == "content_too_long"


def test_message_id_is_required():
    assert require_message_id(" m1 ") == "m1"
    with pytest.raises(ChatPolicyError) as exc:
        require_message_id(None)
    assert exc.value.code == "missing_message_id"
    assert exc.value.detail == "messageId is required"


def test_resolve_room_defaults_to_global():
    assert resolve_room(None, "alice") == ("global", None)
    assert resolve_room("global", "alice") == ("global", None)


def test_resolve_room_canonicalises_direct_rooms():
    room_id, key = resolve_room("dm:bob:alice", "alice")
    assert room_id == "dm:alice:bob"
    assert key == DirectRoomKey.from_participants("bob", "alice")
    assert room_kind(room_id) == "direct"


def test_resolve_room_rejects_outsiders_and_unknown_names():
    with pytest.raises(ChatPolicyError) as forbidden:
        resolve_room("dm:alice:bob", "carol")
    assert forbidden.value.code == "room_forbidden"
    assert forbidden.value.status_code == 403

    for bad in ("lobby", "dm:alice", "dm:alice:alice", "dm::bob"):
        with pytest.raises(ChatPolicyError) as unknown:
            resolve_room(bad, "alice")
        assert unknown.value.code == "unknown_room"
        assert unknown.value.status_code == 404


def test_direct_room_key_helpers():
    key = DirectRoomKey.from_participants("zed", "amy")
    assert key.room_id == "dm:amy:zed"
    assert key.participants() == ("amy", "zed")
    assert key.peer_of("amy") == "zed"
    assert key.peer_of("zed") == "amy"
    assert DirectRoomKey.parse(key.room_id) == key


def test_user_ids_with_separator_cannot_form_direct_rooms():
    with pytest.raises(ValueError):
        DirectRoomKey.from_participants("alice", "bob:smith")
    assert DirectRoomKey.parse("dm:alice:bob:smith") is None

    with pytest.raises(ChatPolicyError) as exc:
        resolve_room("dm:alice:bob:smith", "alice")
    assert exc.value.code == "unknown_room"


@pytest.mark.asyncio
async def test_directory_refuses_ids_with_separator():
    with pytest.raises(ValueError):
        await UserDirectory().upsert_user(UserProfile(id="bob:smith", name="Bob"))
    assert await UserDirectory().get_user("bob:smith") is None
