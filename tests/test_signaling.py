import base64

import pytest
from fastapi import status
from starlette.websockets import WebSocketDisconnect

from callserver.signaling import hub
from tests.conftest import auth_header

MOCK_TRANSCRIPT = "This is a mock transcription for development purposes."


def connect(client, token):
    return client.websocket_connect(f"/ws?token={token}")


def join(ws, room_id):
    assert ws.receive_json()["type"] == "connected"
    ws.send_json({"type": "join_room", "roomId": room_id})
    joined = ws.receive_json()
    assert joined["type"] == "room_joined"
    return joined


@pytest.fixture
def two_users(register, make_room):
    alice_token, alice = register("alice")
    bob_token, bob = register("bob")
    room = make_room(alice_token)
    return alice_token, alice, bob_token, bob, room["roomId"]


def test_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_rejects_invalid_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=garbage"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_connected_marks_user_online(client, register):
    token, user = register("alice")
    with connect(client, token) as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["connectionId"]
        assert hello["user"]["id"] == user["id"]
        me = client.get("/api/auth/me", headers=auth_header(token)).json()["user"]
        assert me["isOnline"] is True

    me = client.get("/api/auth/me", headers=auth_header(token)).json()["user"]
    assert me["isOnline"] is False
    assert hub.connections == {}


def test_join_room_announces_newcomer(client, two_users):
    alice_token, alice, bob_token, bob, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        joined = join(alice_ws, room_id)
        assert joined["room"]["roomId"] == room_id
        assert [p["id"] for p in joined["participants"]] == [alice["id"]]

        with connect(client, bob_token) as bob_ws:
            joined = join(bob_ws, room_id)
            assert [p["id"] for p in joined["participants"]] == [alice["id"], bob["id"]]

            announced = alice_ws.receive_json()
            assert announced["type"] == "user_joined"
            assert announced["user"]["id"] == bob["id"]

            bob_ws.send_json({"type": "leave_room", "roomId": room_id})
            left = alice_ws.receive_json()
            assert left == {"type": "user_left", "userId": str(bob["id"])}
            assert [p["id"] for p in hub.participants(room_id)] == [alice["id"]]


def test_disconnect_removes_connection_from_room(client, two_users):
    alice_token, alice, bob_token, bob, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            assert alice_ws.receive_json()["type"] == "user_joined"
        assert [p["id"] for p in hub.participants(room_id)] == [alice["id"]]
        assert not hub.is_user_connected(str(bob["id"]))
        me = client.get("/api/auth/me", headers=auth_header(bob_token)).json()["user"]
        assert me["isOnline"] is False


def test_joining_another_room_leaves_the_previous_one(client, two_users, make_room):
    alice_token, alice, bob_token, bob, room_id = two_users
    other_room = make_room(bob_token, name="Retro")["roomId"]
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            assert alice_ws.receive_json()["type"] == "user_joined"

            bob_ws.send_json({"type": "join_room", "roomId": other_room})
            joined = bob_ws.receive_json()
            assert joined["type"] == "room_joined"
            assert [p["id"] for p in joined["participants"]] == [bob["id"]]

            assert alice_ws.receive_json() == {"type": "user_left", "userId": str(bob["id"])}
            (bob_connection,) = hub.user_connections[str(bob["id"])]
            assert bob_connection not in hub.rooms.get(room_id, [])
            assert [p["id"] for p in hub.participants(room_id)] == [alice["id"]]
            assert hub.rooms[other_room] == [bob_connection]


def test_second_tab_does_not_repeat_join(client, two_users):
    alice_token, alice, bob_token, _, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            assert alice_ws.receive_json()["type"] == "user_joined"
            with connect(client, alice_token) as second_tab:
                joined = join(second_tab, room_id)
                assert [p["id"] for p in joined["participants"]].count(alice["id"]) == 1
                # bob hears nothing; his next event is the reply to his own bad request
                bob_ws.send_json({"type": "dance"})
                assert bob_ws.receive_json() == {"type": "error", "message": "Unknown event: dance"}


def test_join_unknown_room(client, register):
    token, _ = register("alice")
    with connect(client, token) as ws:
        ws.receive_json()
        ws.send_json({"type": "join_room", "roomId": "NOPE1234"})
        assert ws.receive_json() == {"type": "error", "message": "Room not found"}
        ws.send_json({"type": "join_room"})
        assert ws.receive_json() == {"type": "error", "message": "roomId is required"}


def test_offer_is_relayed_to_target(client, two_users):
    alice_token, alice, bob_token, bob, room_id = two_users
    offer = {"type": "offer", "sdp": "v=0\r\n"}
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            alice_ws.receive_json()

            alice_ws.send_json({
                "type": "webrtc_offer", "roomId": room_id, "targetUserId": bob["id"], "offer": offer,
            })
            relayed = bob_ws.receive_json()
            assert relayed == {
                "type": "webrtc_offer", "roomId": room_id, "offer": offer, "fromUserId": str(alice["id"]),
            }

            candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}
            bob_ws.send_json({
                "type": "webrtc_ice_candidate", "roomId": room_id,
                "targetUserId": str(alice["id"]), "candidate": candidate,
            })
            relayed = alice_ws.receive_json()
            assert relayed["fromUserId"] == str(bob["id"])
            assert relayed["candidate"] == candidate


def test_signal_errors(client, two_users):
    alice_token, alice, bob_token, bob, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)

        alice_ws.send_json({"type": "webrtc_answer", "answer": {}})
        assert alice_ws.receive_json() == {"type": "error", "message": "targetUserId is required"}

        alice_ws.send_json({"type": "webrtc_answer", "targetUserId": alice["id"], "answer": {}})
        assert alice_ws.receive_json() == {"type": "error", "message": "Cannot signal yourself"}

        # bob is not connected at all
        alice_ws.send_json({"type": "webrtc_offer", "targetUserId": bob["id"], "offer": {}})
        assert alice_ws.receive_json() == {"type": "error", "message": "Target user is not in your room"}


def test_malformed_and_unknown_events(client, register):
    token, _ = register("alice")
    with connect(client, token) as ws:
        ws.receive_json()
        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": "Malformed message"}
        ws.send_text("[1, 2]")
        assert ws.receive_json() == {"type": "error", "message": "Malformed message"}
        ws.send_json({"type": "dance"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown event: dance"}


def test_room_events_require_membership(client, register):
    token, _ = register("alice")
    with connect(client, token) as ws:
        ws.receive_json()
        ws.send_json({"type": "send_message", "roomId": "ABCDEFGH", "message": "hi there"})
        assert ws.receive_json() == {"type": "error", "message": "You are not in this room"}


def test_preferences_update_is_broadcast(client, two_users):
    alice_token, _, bob_token, bob, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            alice_ws.receive_json()

            bob_ws.send_json({
                "type": "user_preferences_updated", "roomId": room_id, "preferences": {"language": "fr"},
            })
            assert alice_ws.receive_json() == {
                "type": "user_preferences_updated",
                "userId": str(bob["id"]),
                "preferences": {"language": "fr"},
            }
            assert hub.participants(room_id)[1]["preferences"]["language"] == "fr"


def test_chat_message_is_translated_for_each_language(client, two_users):
    alice_token, alice, bob_token, _, room_id = two_users
    client.put("/api/users/preferences", json={"language": "es"}, headers=auth_header(bob_token))

    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            alice_ws.receive_json()

            alice_ws.send_json({"type": "send_message", "roomId": room_id, "message": {"text": "Hello everyone"}})
            for ws in (alice_ws, bob_ws):
                event = ws.receive_json()
                assert event["type"] == "new_message"
                message = event["message"]
                assert message["sender"]["id"] == alice["id"]
                assert message["type"] == "text"
                assert message["content"]["original"] == {"text": "Hello everyone", "language": "en"}
                assert message["content"]["translations"] == [
                    {"language": "es", "text": "[Spanish translation of: Hello everyone]", "confidence": 0.8}
                ]

    history = client.get(f"/api/rooms/{room_id}/messages", headers=auth_header(alice_token)).json()
    assert [m["content"]["original"]["text"] for m in history["messages"]] == ["Hello everyone"]
    room = client.get(f"/api/rooms/{room_id}", headers=auth_header(alice_token)).json()["room"]
    assert room["metadata"] == {"totalMessages": 1, "totalTranslations": 1, "languages": ["en"]}


def test_empty_chat_message_is_rejected(client, two_users):
    alice_token, _, _, _, room_id = two_users
    with connect(client, alice_token) as ws:
        join(ws, room_id)
        ws.send_json({"type": "send_message", "roomId": room_id, "message": {"text": "   "}})
        assert ws.receive_json() == {"type": "error", "message": "Message text is required"}


def test_reactions_are_broadcast_and_replace_earlier_ones(client, two_users, make_room):
    alice_token, alice, bob_token, bob, room_id = two_users
    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            alice_ws.receive_json()

            alice_ws.send_json({"type": "send_message", "roomId": room_id, "message": {"text": "Ship it?"}})
            message_id = alice_ws.receive_json()["message"]["id"]
            bob_ws.receive_json()

            bob_ws.send_json({"type": "message_reaction", "roomId": room_id, "messageId": message_id, "emoji": "👍"})
            bob_ws.send_json({"type": "message_reaction", "roomId": room_id, "messageId": str(message_id), "emoji": "🎉"})
            for ws in (alice_ws, bob_ws):
                first, second = ws.receive_json(), ws.receive_json()
                assert first["type"] == second["type"] == "message_updated"
                assert second["message"]["id"] == message_id
                reactions = second["message"]["metadata"]["reactions"]
                assert [(r["userId"], r["emoji"]) for r in reactions] == [(bob["id"], "🎉")]

            bob_ws.send_json({"type": "message_reaction", "roomId": room_id, "messageId": message_id, "emoji": ""})
            assert bob_ws.receive_json() == {"type": "error", "message": "A valid emoji is required"}
            bob_ws.send_json({"type": "message_reaction", "roomId": room_id, "emoji": "👍"})
            assert bob_ws.receive_json() == {"type": "error", "message": "messageId is required"}
            bob_ws.send_json({"type": "message_reaction", "roomId": room_id, "messageId": 999, "emoji": "👍"})
            assert bob_ws.receive_json() == {"type": "error", "message": "Message not found"}

    # A message from another room cannot be reacted to
    other_room = make_room(bob_token, name="Retro")["roomId"]
    with connect(client, bob_token) as bob_ws:
        join(bob_ws, other_room)
        bob_ws.send_json({"type": "message_reaction", "roomId": other_room, "messageId": message_id, "emoji": "👍"})
        assert bob_ws.receive_json() == {"type": "error", "message": "Message not found"}


def test_audio_produces_subtitles_per_language(client, two_users):
    alice_token, alice, bob_token, _, room_id = two_users
    client.put("/api/users/preferences", json={"language": "es"}, headers=auth_header(bob_token))
    audio = base64.b64encode(b"fake-audio-bytes").decode()

    with connect(client, alice_token) as alice_ws:
        join(alice_ws, room_id)
        with connect(client, bob_token) as bob_ws:
            join(bob_ws, room_id)
            alice_ws.receive_json()

            alice_ws.send_json({"type": "audio_data", "roomId": room_id, "audio": audio, "format": "webm"})

            own = alice_ws.receive_json()
            assert own["type"] == "new_subtitle"
            assert own["userId"] == str(alice["id"])
            assert own["text"] == MOCK_TRANSCRIPT
            assert own["translatedText"] == MOCK_TRANSCRIPT
            assert own["targetLanguage"] == "en"

            theirs = bob_ws.receive_json()
            assert theirs["messageId"] == own["messageId"]
            assert theirs["translatedText"] == f"[Spanish translation of: {MOCK_TRANSCRIPT}]"
            assert theirs["targetLanguage"] == "es"

    history = client.get(f"/api/rooms/{room_id}/messages", headers=auth_header(alice_token)).json()
    subtitle = history["messages"][0]
    assert subtitle["type"] == "subtitle"
    assert subtitle["audioData"]["format"] == "webm"
    assert subtitle["audioData"]["transcription"]["text"] == MOCK_TRANSCRIPT


def test_audio_with_bad_payload(client, two_users):
    alice_token, _, _, _, room_id = two_users
    with connect(client, alice_token) as ws:
        join(ws, room_id)
        ws.send_json({"type": "audio_data", "roomId": room_id, "audio": "%%%not-base64%%%"})
        assert ws.receive_json() == {"type": "error", "message": "Invalid audio payload"}


def test_audio_when_subtitles_disabled(client, register, make_room):
    token, _ = register("alice")
    room = make_room(token, enableSubtitles=False)
    audio = base64.b64encode(b"fake-audio-bytes").decode()
    with connect(client, token) as ws:
        join(ws, room["roomId"])
        ws.send_json({"type": "audio_data", "roomId": room["roomId"], "audio": audio})
        assert ws.receive_json() == {"type": "error", "message": "Subtitles are disabled for this room"}
