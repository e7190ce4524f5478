"""Tests for the realtime hub and the WebSocket transport."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from supportchat.main import app
from supportchat.services.realtime import RealtimeHub


class FakeConnection:
    """Stands in for a WebSocket; records what it was sent."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def token_for(directory, name):
    return directory.headers[name]["Authorization"].split()[1]


class TestRealtimeHub:

    def test_publish_reaches_subscribers_of_the_topic_only(self):
        hub = RealtimeHub()
        first, second, elsewhere = FakeConnection(), FakeConnection(), FakeConnection()
        hub.subscribe(first, 1)
        hub.subscribe(second, 1)
        hub.subscribe(elsewhere, 2)

        async def scenario():
            scheduled = hub.publish(1, "newMessage", {"message": {"id": 10}})
            await hub.close()
            return scheduled

        assert asyncio.run(scenario()) == 2
        expected = {"kind": "newMessage", "conversation_id": 1, "payload": {"message": {"id": 10}}}
        assert first.sent == [expected]
        assert second.sent == [expected]
        assert elsewhere.sent == []

    def test_publish_without_subscribers(self):
        hub = RealtimeHub()

        async def scenario():
            return hub.publish(5, "messageDeleted", {"message_id": 1})

        assert asyncio.run(scenario()) == 0

    def test_unknown_event_kind_is_rejected(self):
        hub = RealtimeHub()
        with pytest.raises(ValueError):
            hub.publish(1, "typing", {})

    def test_failed_delivery_drops_the_connection(self):
        hub = RealtimeHub()
        healthy, broken = FakeConnection(), FakeConnection(fail=True)
        hub.subscribe(healthy, 1)
        hub.subscribe(broken, 1)

        async def scenario():
            hub.publish(1, "messageReaction", {"message_id": 3, "reactions": []})
            await asyncio.gather(*list(hub._pending), return_exceptions=True)

        asyncio.run(scenario())
        assert len(healthy.sent) == 1
        assert hub.subscribers(1) == {healthy}

    def test_unsubscribe_and_disconnect(self):
        hub = RealtimeHub()
        conn = FakeConnection()
        hub.subscribe(conn, 1)
        hub.subscribe(conn, 2)

        hub.unsubscribe(conn, 1)
        assert hub.subscribers(1) == set()
        assert hub.subscribers(2) == {conn}

        hub.disconnect(conn)
        assert hub.topics == {}

    def test_close_clears_subscriptions(self):
        hub = RealtimeHub()
        hub.subscribe(FakeConnection(), 1)
        asyncio.run(hub.close())
        assert hub.subscribers(1) == set()


    def test_drop_user_only_removes_that_users_connections(self):
        hub = RealtimeHub()
        dave_phone, dave_laptop, bob = FakeConnection(), FakeConnection(), FakeConnection()
        hub.subscribe(dave_phone, 1, user_id=4)
        hub.subscribe(dave_laptop, 1, user_id=4)
        hub.subscribe(dave_laptop, 2, user_id=4)
        hub.subscribe(bob, 1, user_id=2)

        assert hub.drop_user(1, 4) == 2
        assert hub.subscribers(1) == {bob}
        assert hub.subscribers(2) == {dave_laptop}
        assert hub.drop_user(1, 4) == 0

    def test_drop_topic_forgets_the_conversation(self):
        hub = RealtimeHub()
        hub.subscribe(FakeConnection(), 7, user_id=1)
        hub.subscribe(FakeConnection(), 7, user_id=2)

        assert hub.drop_topic(7) == 2
        assert hub.topics == {}
        assert hub.drop_topic(7) == 0

    def test_disconnect_forgets_the_owner(self):
        hub = RealtimeHub()
        conn = FakeConnection()
        hub.subscribe(conn, 1, user_id=3)
        hub.disconnect(conn)
        assert hub.owners == {}

class TestWebSocket:

    @pytest.fixture
    def direct(self, client, directory):
        return client.post(
            "/api/conversations/direct",
            headers=directory.headers["bob"],
            json={"participant_id": directory.carol}
        ).json()

    def test_events_reach_joined_members(self, directory, direct):
        with TestClient(app) as client:
            with client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as ws:
                ws.send_json({"type": "join", "conversation_id": direct["id"]})
                assert ws.receive_json() == {"type": "joined", "conversation_id": direct["id"]}

                sent = client.post(
                    f"/api/conversations/{direct['id']}/messages",
                    headers=directory.headers["bob"],
                    json={"text": "ping from bob"}
                ).json()
                event = ws.receive_json()
                assert event["kind"] == "newMessage"
                assert event["conversation_id"] == direct["id"]
                assert event["payload"]["message"]["text"] == "ping from bob"

                client.put(
                    f"/api/messages/{sent['id']}",
                    headers=directory.headers["bob"],
                    json={"text": "edited"}
                )
                event = ws.receive_json()
                assert event["kind"] == "messageUpdated"
                assert event["payload"]["message"]["text"] == "edited"

                client.post(
                    f"/api/messages/{sent['id']}/reactions",
                    headers=directory.headers["bob"],
                    json={"emoji": "👍"}
                )
                event = ws.receive_json()
                assert event["kind"] == "messageReaction"
                assert event["payload"] == {
                    "message_id": sent["id"],
                    "reactions": [{"emoji": "👍", "users": [directory.bob], "count": 1}]
                }

                client.delete(f"/api/messages/{sent['id']}", headers=directory.headers["bob"])
                event = ws.receive_json()
                assert event == {
                    "kind": "messageDeleted",
                    "conversation_id": direct["id"],
                    "payload": {"message_id": sent["id"]}
                }

    def test_join_marks_messages_delivered(self, client, directory, direct):
        sent = client.post(
            f"/api/conversations/{direct['id']}/messages",
            headers=directory.headers["bob"],
            json={"text": "are you there?"}
        ).json()
        assert sent["delivery_status"] == "sent"

        with client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as ws:
            ws.send_json({"type": "join", "conversation_id": direct["id"]})
            assert ws.receive_json()["type"] == "joined"

        message = client.get(f"/api/messages/{sent['id']}", headers=directory.headers["bob"]).json()
        assert message["delivery_status"] == "delivered"

    def test_join_requires_membership(self, client, directory, direct):
        with client.websocket_connect(f"/ws?token={token_for(directory, 'dave')}") as ws:
            ws.send_json({"type": "join", "conversation_id": direct["id"]})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["error"] == "PERMISSION_DENIED"

        with client.websocket_connect(f"/ws?token={token_for(directory, 'frank')}") as ws:
            ws.send_json({"type": "join", "conversation_id": direct["id"]})
            assert ws.receive_json()["error"] == "NOT_FOUND"

    def test_leave_and_ping(self, client, directory, direct):
        hub = app.state.realtime_hub
        with client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "join", "conversation_id": direct["id"]})
            ws.receive_json()
            assert len(hub.subscribers(direct["id"])) == 1

            ws.send_json({"type": "leave", "conversation_id": direct["id"]})
            assert ws.receive_json() == {"type": "left", "conversation_id": direct["id"]}
            assert hub.subscribers(direct["id"]) == set()

    def test_invalid_frame_gets_an_error(self, client, directory):
        with client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"
            ws.send_json({"type": "subscribe", "conversation_id": 1})
            assert ws.receive_json()["type"] == "error"

    def test_bad_token_is_rejected(self, client, directory):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws?token=not-a-token") as ws:
                ws.receive_json()

    def test_removed_member_stops_receiving_events(self, directory):
        with TestClient(app) as client:
            group = client.post(
                "/api/conversations/",
                headers=directory.headers["alice"],
                json={"title": "Escalations", "participant_ids": [directory.bob, directory.carol, directory.dave]}
            ).json()

            with client.websocket_connect(f"/ws?token={token_for(directory, 'dave')}") as dave_ws, \
                    client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as carol_ws:
                for ws in (dave_ws, carol_ws):
                    ws.send_json({"type": "join", "conversation_id": group["id"]})
                    assert ws.receive_json()["type"] == "joined"

                removed = client.delete(
                    f"/api/conversations/{group['id']}/participants/{directory.dave}",
                    headers=directory.headers["alice"]
                )
                assert removed.status_code == 200

                client.post(
                    f"/api/conversations/{group['id']}/messages",
                    headers=directory.headers["bob"],
                    json={"text": "after removal secret"}
                )
                event = carol_ws.receive_json()
                assert event["payload"]["message"]["text"] == "after removal secret"

                dave_ws.send_json({"type": "ping"})
                assert dave_ws.receive_json() == {"type": "pong"}

    def test_deleting_a_conversation_closes_its_topic(self, directory):
        hub = app.state.realtime_hub
        with TestClient(app) as client:
            group = client.post(
                "/api/conversations/",
                headers=directory.headers["alice"],
                json={"title": "Launch", "participant_ids": [directory.bob, directory.carol]}
            ).json()

            with client.websocket_connect(f"/ws?token={token_for(directory, 'carol')}") as ws:
                ws.send_json({"type": "join", "conversation_id": group["id"]})
                assert ws.receive_json()["type"] == "joined"
                assert len(hub.subscribers(group["id"])) == 1

                response = client.delete(
                    f"/api/conversations/{group['id']}/permanent",
                    headers=directory.headers["alice"]
                )
                assert response.status_code == 200
                assert hub.subscribers(group["id"]) == set()
                assert group["id"] not in hub.topics
