"""
Tests for the players API endpoints.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import ACCOUNT_FOO, make_snapshot
from uc_helper.core.exceptions import (
    InvalidQueryError,
    LinkConflictError,
    NotLinkedError,
    ServiceUnavailableError,
    StoreUnavailableError,
    UnknownPlayerError,
)
from uc_helper.features.players.dependencies import (
    get_identity_resolver,
    get_player_store,
)
from uc_helper.features.players.repository import PlayerRecordStoreInterface
from uc_helper.features.players.resolver import IdentityResolver
from uc_helper.features.players.schemas import (
    LinkResult,
    PlayerRecord,
    RefreshFailure,
    RefreshReport,
)
from uc_helper.features.players.transformers import record_to_info, snapshot_to_live
from uc_helper.main import app

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

RECORD = PlayerRecord(
    chat_identity="1001",
    game_username="Foo",
    game_account_id=ACCOUNT_FOO,
    stats=make_snapshot().stats,
    linked_at=NOW,
    updated_at=NOW,
    version=1,
)


@pytest.fixture
def resolver():
    resolver = MagicMock(spec=IdentityResolver)
    resolver.to_info.side_effect = lambda record, max_age=None: record_to_info(
        record, NOW, max_age or timedelta(minutes=45)
    )
    return resolver


@pytest.fixture
def store():
    return AsyncMock(spec=PlayerRecordStoreInterface)


@pytest.fixture
def client(resolver, store):
    app.dependency_overrides[get_identity_resolver] = lambda: resolver
    app.dependency_overrides[get_player_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestLinkEndpoint:
    def test_link(self, client, resolver):
        resolver.link.return_value = LinkResult(record=RECORD, created=True, events=[])

        response = client.post(
            "/players/link", json={"chat_identity": "1001", "username": "Foo"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["created"] is True
        assert body["player"]["game_account_id"] == ACCOUNT_FOO
        assert body["player"]["stats"]["rank_tier"] == "s"
        assert body["username_changed"] is False
        resolver.link.assert_awaited_once_with("1001", "Foo")

    @pytest.mark.parametrize(
        "error,status_code",
        [
            (UnknownPlayerError("No TETR.IO user named 'ghost'"), 404),
            (InvalidQueryError("bad name"), 400),
            (LinkConflictError("taken"), 409),
            (ServiceUnavailableError("TETR.IO down"), 503),
            (StoreUnavailableError("timed out"), 503),
        ],
    )
    def test_link_errors(self, client, resolver, error, status_code):
        resolver.link.side_effect = error

        response = client.post(
            "/players/link", json={"chat_identity": "1001", "username": "ghost"}
        )

        assert response.status_code == status_code
        assert response.json()["detail"] == error.message

    def test_link_validation(self, client, resolver):
        response = client.post("/players/link", json={"chat_identity": "1001"})

        assert response.status_code == 422
        resolver.link.assert_not_called()


class TestWhoisEndpoint:
    def test_whois_record(self, client, resolver):
        resolver.resolve.return_value = record_to_info(
            RECORD, NOW + timedelta(minutes=10), timedelta(minutes=5)
        )

        response = client.get(
            "/players/whois", params={"query": "<@1001>", "max_age_minutes": 5}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "record"
        assert body["is_stale"] is True
        assert body["age_seconds"] == 600
        resolver.resolve.assert_awaited_once_with(
            "<@1001>", max_age=timedelta(minutes=5)
        )

    def test_whois_live(self, client, resolver):
        resolver.resolve.return_value = snapshot_to_live(make_snapshot())

        response = client.get("/players/whois", params={"query": "foo"})

        assert response.status_code == 200
        assert response.json()["kind"] == "live"
        assert response.json()["linked"] is False
        resolver.resolve.assert_awaited_once_with("foo", max_age=None)

    def test_whois_not_linked(self, client, resolver):
        resolver.resolve.side_effect = NotLinkedError("not linked")

        response = client.get("/players/whois", params={"query": "<@999>"})

        assert response.status_code == 404

    def test_whois_requires_query(self, client):
        assert client.get("/players/whois").status_code == 422


class TestStatsEndpoint:
    def test_stats(self, client, resolver):
        resolver.stats.return_value = record_to_info(RECORD, NOW, timedelta(minutes=45))

        response = client.get(
            "/players/stats", params={"query": "foo", "max_age_minutes": 30}
        )

        assert response.status_code == 200
        assert response.json()["kind"] == "record"
        assert response.json()["is_stale"] is False
        resolver.stats.assert_awaited_once_with("foo", max_age=timedelta(minutes=30))

    def test_stats_live(self, client, resolver):
        resolver.stats.return_value = snapshot_to_live(make_snapshot())

        response = client.get("/players/stats", params={"query": "foo"})

        assert response.json()["kind"] == "live"
        resolver.stats.assert_awaited_once_with("foo", max_age=None)

    def test_stats_unknown_player(self, client, resolver):
        resolver.stats.side_effect = UnknownPlayerError("No TETR.IO user named 'ghost'")

        response = client.get("/players/stats", params={"query": "ghost"})

        assert response.status_code == 404


class TestRefreshEndpoint:
    def test_refresh_with_max_age(self, client, resolver):
        resolver.refresh_stale.return_value = RefreshReport(
            succeeded=["1001"],
            failed=[
                RefreshFailure(
                    chat_identity="2002",
                    game_account_id="5f0a1b2c3d4e5f6a7b8c9d0e",
                    reason="TransientError: TETR.IO API Error 502: Server error 502",
                )
            ],
        )

        response = client.post("/players/refresh-stale", json={"max_age_minutes": 30})

        assert response.status_code == 200
        assert response.json()["succeeded"] == ["1001"]
        assert response.json()["failed"][0]["chat_identity"] == "2002"
        resolver.refresh_stale.assert_awaited_once_with(timedelta(minutes=30))

    def test_refresh_default_max_age(self, client, resolver):
        resolver.refresh_stale.return_value = RefreshReport(skipped=True)

        response = client.post("/players/refresh-stale")

        assert response.status_code == 200
        assert response.json()["skipped"] is True
        resolver.refresh_stale.assert_awaited_once_with(None)


class TestUnlinkEndpoints:
    def test_unlink(self, client, resolver):
        resolver.unlink.return_value = RECORD.model_copy(
            update={"game_account_id": None, "version": 2}
        )

        response = client.delete("/players/1001/link")

        assert response.status_code == 200
        assert response.json()["linked"] is False

    def test_unlink_not_linked(self, client, resolver):
        resolver.unlink.side_effect = NotLinkedError("not linked")

        assert client.delete("/players/1001/link").status_code == 404

    def test_remove(self, client, store):
        store.remove.return_value = True

        assert client.delete("/players/1001").status_code == 204
        store.remove.assert_awaited_once_with("1001")

    def test_remove_missing(self, client, store):
        store.remove.return_value = False

        assert client.delete("/players/1001").status_code == 404
