"""End-to-end tests through the FastAPI app.

Database reads go through fresh sessions from ``test_session_factory`` so a
test never holds a transaction open on the shared in-memory connection while
the app is handling a request.
"""
import pytest

from app.config import get_settings
from app.main import create_app, lifespan
from app.models.match import Match
from app.services.rate_limiter import RateLimitRule
from app.services.realtime import match_topic, user_matches_topic


def as_user(uid):
    return {"X-User-Id": uid}


async def _swipe(client, actor, target, direction="right"):
    return await client.post(
        "/api/v1/swipes/",
        json={"target_id": target, "direction": direction},
        headers=as_user(actor),
    )


async def _matched(client, a="alice", b="bob"):
    await _swipe(client, a, b)
    resp = await _swipe(client, b, a)
    return resp.json()["match_id"]


class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-Id": "req-42"})
        assert resp.headers["X-Request-Id"] == "req-42"


class TestRequestValidation:

    @pytest.mark.asyncio
    async def test_missing_identity_is_401(self, client, users):
        resp = await client.post(
            "/api/v1/swipes/", json={"target_id": "bob", "direction": "right"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_identity_with_separator_rejected(self, client, users):
        resp = await _swipe(client, "a_b", "carol")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

        created = await client.post(
            "/api/v1/users/",
            json={"email": "ab@uni.example.edu", "display_name": "Ab"},
            headers=as_user("a_b"),
        )
        assert created.status_code == 400

    @pytest.mark.asyncio
    async def test_target_with_separator_rejected(self, client, users):
        resp = await _swipe(client, "alice", "b_c")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_envelope(self, client):
        resp = await client.get("/api/v1/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "HTTP_404"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, client, users):
        resp = await client.post(
            "/api/v1/swipes/",
            json={"target_id": "bob", "direction": "right", "is_match": True},
            headers=as_user("alice"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_bad_direction_rejected(self, client, users):
        resp = await _swipe(client, "alice", "bob", direction="up")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_self_swipe_uses_error_envelope(self, client, users):
        resp = await _swipe(client, "alice", "alice")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestSwipeFlow:

    @pytest.mark.asyncio
    async def test_mutual_like_creates_match(self, client, dispatcher, test_session_factory, users):
        first = await _swipe(client, "alice", "bob")
        assert first.status_code == 201
        assert first.json()["is_match"] is False

        second = await _swipe(client, "bob", "alice")
        body = second.json()
        assert body["is_match"] is True
        assert body["match_id"] == "alice_bob"
        assert ("alice", "bob", "match") in dispatcher.events

        async with test_session_factory() as session:
            match = await session.get(Match, "alice_bob")
            assert match is not None and match.unmatched is False

    @pytest.mark.asyncio
    async def test_notifications_dispatched_after_response(self, client, dispatcher, users):
        resp = await _swipe(client, "alice", "bob")

        assert resp.json()["warnings"] == []
        assert dispatcher.events == [("bob", "alice", "like")]

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_fail_swipe(self, client, dispatcher, users):
        dispatcher.fail = True
        resp = await _swipe(client, "alice", "bob")

        assert resp.status_code == 201
        assert resp.json()["is_match"] is False

    @pytest.mark.asyncio
    async def test_match_event_published_to_both_members(self, client, users):
        alice_feed = client.hub.subscribe(user_matches_topic("alice"))
        bob_feed = client.hub.subscribe(user_matches_topic("bob"))

        await _matched(client)

        for feed in (alice_feed, bob_feed):
            event = feed.queue.get_nowait()
            assert event["type"] == "match.updated"
            assert event["match"]["id"] == "alice_bob"
            assert event["unread_counts"] == {"alice": 0, "bob": 0}

    @pytest.mark.asyncio
    async def test_rate_limit_returns_429(self, client, rate_limiter, users):
        rate_limiter.rules["swipe"] = RateLimitRule(window_ms=60_000, max_count=1)

        assert (await _swipe(client, "alice", "bob")).status_code == 201
        resp = await _swipe(client, "alice", "carol")

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"
        assert int(resp.headers["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_likes_received_requires_premium(self, client, users):
        await _swipe(client, "bob", "alice")
        resp = await client.get("/api/v1/swipes/likes", headers=as_user("alice"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"


class TestMatchesAndMessages:

    @pytest.mark.asyncio
    async def test_message_round_trip(self, client, users):
        match_id = await _matched(client)
        stream = client.hub.subscribe(match_topic(match_id))
        bob_feed = client.hub.subscribe(user_matches_topic("bob"))

        sent = await client.post(
            f"/api/v1/conversations/{match_id}/messages",
            json={"text": "hi bob"},
            headers=as_user("alice"),
        )
        assert sent.status_code == 201
        assert stream.queue.get_nowait()["type"] == "message.created"

        unread = await client.get("/api/v1/matches/unread", headers=as_user("bob"))
        assert unread.json() == {"unread_total": 1}

        listing = await client.get("/api/v1/matches/", headers=as_user("bob"))
        item = listing.json()[0]
        assert item["match_id"] == match_id
        assert item["other_user"]["uid"] == "alice"
        assert item["last_message"] == "hi bob"
        assert item["unread_count"] == 1

        read = await client.post(
            f"/api/v1/conversations/{match_id}/read", headers=as_user("bob")
        )
        assert read.json()["marked"] == 1
        assert bob_feed.queue.get_nowait()["unread_counts"]["bob"] == 1
        assert bob_feed.queue.get_nowait()["unread_counts"]["bob"] == 0
        unread = await client.get("/api/v1/matches/unread", headers=as_user("bob"))
        assert unread.json() == {"unread_total": 0}

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, client, users):
        match_id = await _matched(client)
        resp = await client.post(
            f"/api/v1/conversations/{match_id}/messages",
            json={"text": "   "},
            headers=as_user("alice"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "EMPTY_MESSAGE"

    @pytest.mark.asyncio
    async def test_outsider_cannot_read_conversation(self, client, users):
        match_id = await _matched(client)
        resp = await client.get(
            f"/api/v1/conversations/{match_id}/messages", headers=as_user("carol")
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unmatch_blocks_new_messages(self, client, users):
        match_id = await _matched(client)
        resp = await client.post(
            f"/api/v1/matches/{match_id}/unmatch", headers=as_user("bob")
        )
        assert resp.status_code == 200
        assert resp.json()["unmatched_by"] == "bob"

        blocked = await client.post(
            f"/api/v1/conversations/{match_id}/messages",
            json={"text": "still there?"},
            headers=as_user("alice"),
        )
        assert blocked.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_match_is_404(self, client, users):
        resp = await client.get("/api/v1/matches/alice_carol", headers=as_user("alice"))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


class TestProfiles:

    @pytest.mark.asyncio
    async def test_register_profile(self, client):
        resp = await client.post(
            "/api/v1/users/",
            json={"email": "Dana@Uni.Example.edu", "display_name": "<b>Dana</b>", "age": 22},
            headers=as_user("dana"),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == "dana"
        assert body["display_name"] == "Dana"
        assert body["is_profile_complete"] is False

        duplicate = await client.post(
            "/api/v1/users/",
            json={"email": "other@uni.example.edu", "display_name": "Dana"},
            headers=as_user("dana"),
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_update_propagates_to_matches(self, client, test_session_factory, users):
        match_id = await _matched(client)

        resp = await client.patch(
            "/api/v1/users/me",
            json={"bio": "<i>coffee</i> addict"},
            headers=as_user("alice"),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["bio"] == "coffee addict"
        assert body["matches_refreshed"] == 1

        async with test_session_factory() as session:
            match = await session.get(Match, match_id)
            assert match.user_profiles["alice"]["bio"] == "coffee addict"

    @pytest.mark.asyncio
    async def test_null_age_keeps_stored_value(self, client, users):
        resp = await client.patch(
            "/api/v1/users/me", json={"age": None, "bio": "hi"}, headers=as_user("alice")
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["age"] == 21
        assert resp.json()["user"]["bio"] == "hi"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, client, users):
        resp = await client.patch(
            "/api/v1/users/me", json={"is_banned": False}, headers=as_user("alice")
        )
        assert resp.status_code == 400


class TestBilling:

    @pytest.mark.asyncio
    async def test_purchase_requires_secret(self, client, users, monkeypatch):
        monkeypatch.setattr(get_settings(), "BILLING_WEBHOOK_SECRET", "s3cret")

        denied = await client.post(
            "/api/v1/credits/purchases", json={"user_id": "alice", "amount": 5}
        )
        assert denied.status_code == 401
        assert denied.json()["error"]["code"] == "UNAUTHENTICATED"

        granted = await client.post(
            "/api/v1/credits/purchases",
            json={"user_id": "alice", "amount": 5},
            headers={"X-Billing-Secret": "s3cret"},
        )
        assert granted.status_code == 200
        assert granted.json()["super_likes"] == 5

        mine = await client.get("/api/v1/credits/me", headers=as_user("alice"))
        assert mine.json()["super_likes"] == 5

    @pytest.mark.asyncio
    async def test_super_like_spends_purchased_credit(self, client, users, monkeypatch):
        monkeypatch.setattr(get_settings(), "BILLING_WEBHOOK_SECRET", "s3cret")
        await client.post(
            "/api/v1/credits/purchases",
            json={"user_id": "alice", "amount": 1},
            headers={"X-Billing-Secret": "s3cret"},
        )

        resp = await _swipe(client, "alice", "carol", direction="superlike")
        assert resp.json()["is_super_like"] is True
        assert resp.json()["warnings"] == []

        alice = await client.get("/api/v1/credits/me", headers=as_user("alice"))
        carol = await client.get("/api/v1/credits/me", headers=as_user("carol"))
        assert alice.json()["super_likes"] == 0
        assert carol.json()["super_likes"] == 1

    @pytest.mark.asyncio
    async def test_cancel_unknown_membership_is_404(self, client, users, monkeypatch):
        monkeypatch.setattr(get_settings(), "BILLING_WEBHOOK_SECRET", "s3cret")
        resp = await client.post(
            "/api/v1/credits/subscriptions/cancel",
            json={"membership_id": "mem_missing"},
            headers={"X-Billing-Secret": "s3cret"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


class TestGroups:

    @pytest.mark.asyncio
    async def test_create_discover_and_join(self, client, users):
        created = await client.post(
            "/api/v1/groups/",
            json={"name": "Climbing", "interests": ["climbing"]},
            headers=as_user("alice"),
        )
        assert created.status_code == 201
        group = created.json()
        assert group["member_count"] == 1
        assert group["creator_id"] == "alice"

        own_deck = await client.get("/api/v1/groups/discover", headers=as_user("alice"))
        assert own_deck.json() == []

        deck = await client.get("/api/v1/groups/discover", headers=as_user("bob"))
        assert [g["id"] for g in deck.json()] == [group["id"]]

        joined = await client.post(
            f"/api/v1/groups/{group['id']}/join", headers=as_user("bob")
        )
        assert joined.json() == {"group_id": group["id"], "status": "member", "joined": True}

        deck = await client.get("/api/v1/groups/discover", headers=as_user("bob"))
        assert deck.json() == []
        detail = await client.get(f"/api/v1/groups/{group['id']}", headers=as_user("bob"))
        assert detail.json()["member_count"] == 2

    @pytest.mark.asyncio
    async def test_private_group_approval(self, client, users):
        created = await client.post(
            "/api/v1/groups/",
            json={"name": "Book club", "is_private": True},
            headers=as_user("alice"),
        )
        group_id = created.json()["id"]

        joined = await client.post(f"/api/v1/groups/{group_id}/join", headers=as_user("bob"))
        assert joined.json()["status"] == "pending"

        denied = await client.post(
            f"/api/v1/groups/{group_id}/members/bob/approve", headers=as_user("carol")
        )
        assert denied.status_code == 403

        approved = await client.post(
            f"/api/v1/groups/{group_id}/members/bob/approve", headers=as_user("alice")
        )
        assert approved.json()["status"] == "member"
        members = await client.get(
            f"/api/v1/groups/{group_id}/members", headers=as_user("alice")
        )
        assert sorted(m["user_id"] for m in members.json()) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_unknown_group_is_404(self, client, users):
        resp = await client.post("/api/v1/groups/missing/join", headers=as_user("bob"))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


class TestLifespan:

    @pytest.mark.asyncio
    async def test_shared_http_client_closed_on_shutdown(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "NOTIFICATION_WEBHOOK_URL", "https://notify.test/events")
        monkeypatch.setattr(get_settings(), "REDIS_URL", "")
        application = create_app()

        async with lifespan(application):
            http_client = application.state.http_client
            assert application.state.dispatcher._client is http_client
            assert not http_client.is_closed

        assert http_client.is_closed
