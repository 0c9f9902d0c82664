"""Tests for API key issuance, verification and management."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import status
from sqlalchemy import select

from braidarr.config.settings import settings
from braidarr.features.api_keys.exceptions import InvalidApiKey
from braidarr.features.api_keys.models import ApiKey, ApiKeyUsage
from braidarr.features.api_keys.schemas import ApiKeyCreateRequest
from braidarr.features.api_keys.service import ApiKeyService, generate_api_key, hash_api_key, is_valid_key_format
from braidarr.features.auth.exceptions import InsufficientScopeException
from braidarr.features.user.models import UserStatus
from braidarr.shared.rate_limit.limiter import RateLimiter
from braidarr.shared.scopes.scopes import Scope

API = settings.api_prefix


async def _create_key(session, owner, scopes=None, **kwargs) -> tuple[ApiKey, str]:
    data = ApiKeyCreateRequest(
        name=kwargs.pop("name", "integration"),
        scopes=scopes or [Scope(resource="lists", actions=["read"])],
        **kwargs,
    )
    api_key, plaintext = await ApiKeyService.create(session, owner, data)
    await session.commit()
    return api_key, plaintext


class TestKeyMaterial:
    def test_generated_key_format(self):
        key, prefix = generate_api_key()

        assert key.startswith("sk_")
        assert len(key) == 3 + 64
        assert prefix == key[:11]
        assert is_valid_key_format(key)

    def test_keys_are_unique(self):
        assert len({generate_api_key()[0] for _ in range(50)}) == 50

    def test_hash_depends_on_salt(self):
        key, _ = generate_api_key()
        assert hash_api_key(key, "00" * 16) != hash_api_key(key, "11" * 16)
        assert hash_api_key(key, "00" * 16) == hash_api_key(key, "00" * 16)

    @pytest.mark.parametrize("value", ["", "sk_short", "pk_" + "a" * 64, "sk_" + "G" * 64, "sk_" + "a" * 65])
    def test_invalid_formats(self, value):
        assert not is_valid_key_format(value)


class TestApiKeyService:
    async def test_plaintext_is_not_stored(self, session, make_user):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner)

        assert api_key.key_prefix == plaintext[:11]
        assert api_key.key_hash == hash_api_key(plaintext, api_key.key_salt)
        assert plaintext not in (api_key.key_hash, api_key.key_salt)

    async def test_default_expiry(self, session, make_user):
        owner = await make_user()
        api_key, _ = await _create_key(session, owner)

        expected = datetime.now(UTC) + timedelta(days=settings.api_key_default_expiration_days)
        assert abs((api_key.expires_at - expected).total_seconds()) < 60

    async def test_no_default_expiry(self, session, make_user, monkeypatch):
        monkeypatch.setattr(settings, "api_key_default_expiration_days", 0)
        owner = await make_user()
        api_key, _ = await _create_key(session, owner)
        assert api_key.expires_at is None

    async def test_verify_returns_key_and_owner(self, session, make_user):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner)

        api_key, verified_owner = await ApiKeyService.verify(session, plaintext, ip_address="10.1.1.1")

        assert verified_owner.id == owner.id
        assert api_key.last_used_at is not None
        assert api_key.last_used_ip == "10.1.1.1"

    async def test_verify_records_usage(self, session, make_user):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner)

        await ApiKeyService.verify(session, plaintext, endpoint="/api/v1/lists", method="get")
        await session.commit()

        usage = (await session.execute(select(ApiKeyUsage))).scalars().all()
        assert len(usage) == 1
        assert usage[0].endpoint == "/api/v1/lists"
        assert usage[0].method == "GET"

    async def test_wrong_key_with_known_prefix(self, session, make_user):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner)
        forged = plaintext[:-4] + ("0000" if not plaintext.endswith("0000") else "1111")

        with pytest.raises(InvalidApiKey):
            await ApiKeyService.verify(session, forged)

    async def test_expired_key(self, session, make_user):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner)
        api_key.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        await session.commit()

        with pytest.raises(InvalidApiKey):
            await ApiKeyService.verify(session, plaintext)

    async def test_inactive_key(self, session, make_user):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner)
        api_key.is_active = False
        await session.commit()

        with pytest.raises(InvalidApiKey):
            await ApiKeyService.verify(session, plaintext)

    async def test_inactive_owner(self, session, make_user):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner)
        owner.status = UserStatus.INACTIVE.value
        await session.commit()

        with pytest.raises(InvalidApiKey):
            await ApiKeyService.verify(session, plaintext)

    async def test_revoke_keeps_record(self, session, make_user):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner)

        revoked = await ApiKeyService.revoke(session, owner, api_key.id)
        await session.commit()

        assert revoked.is_active is False
        assert revoked.revoked_at is not None
        assert len(await ApiKeyService.list_keys(session, owner)) == 1
        with pytest.raises(InvalidApiKey):
            await ApiKeyService.verify(session, plaintext)

    def test_authorize(self):
        scopes = [Scope(resource="lists", actions=["read", "sync"])]

        ApiKeyService.authorize(scopes, "lists", "sync")
        with pytest.raises(InsufficientScopeException):
            ApiKeyService.authorize(scopes, "lists", "delete")
        with pytest.raises(InsufficientScopeException):
            ApiKeyService.authorize([], "lists", "read")


class TestApiKeyEndpoints:
    async def test_create_returns_key_once(self, auth_client):
        client, _ = auth_client
        response = await client.post(
            f"{API}/api-keys", json={"name": "Sonarr", "scopes": [{"resource": "lists", "actions": ["read"]}]}
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["key"].startswith("sk_")
        assert body["key_prefix"] == body["key"][:11]
        assert body["warning"]

        listed = await client.get(f"{API}/api-keys")
        assert listed.status_code == status.HTTP_200_OK
        assert listed.json()["total"] == 1
        assert "key" not in listed.json()["keys"][0]

        single = await client.get(f"{API}/api-keys/{body['id']}")
        assert "key" not in single.json()
        assert single.json()["key_prefix"] == body["key_prefix"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "ok name", "scopes": []},
            {"name": "ok name", "scopes": [{"resource": "unknown", "actions": ["read"]}]},
            {"name": "ok name", "scopes": [{"resource": "lists", "actions": ["explode"]}]},
            {"name": "ok name", "scopes": [{"resource": "lists", "actions": [" "]}]},
            {"name": "x", "scopes": [{"resource": "lists", "actions": ["read"]}]},
        ],
    )
    async def test_create_validation(self, auth_client, payload):
        client, _ = auth_client
        response = await client.post(f"{API}/api-keys", json=payload)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_error"

    async def test_expiry_must_be_in_the_future(self, auth_client):
        client, _ = auth_client
        past = (datetime.now(UTC) - timedelta(days=1)).isoformat()
        response = await client.post(
            f"{API}/api-keys",
            json={"name": "stale", "scopes": [{"resource": "lists", "actions": ["read"]}], "expires_at": past},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_key_limit(self, auth_client, monkeypatch):
        client, _ = auth_client
        monkeypatch.setattr(settings, "api_key_max_per_user", 2)
        payload = {"name": "limited", "scopes": [{"resource": "stats", "actions": ["read"]}]}

        for _ in range(2):
            assert (await client.post(f"{API}/api-keys", json=payload)).status_code == status.HTTP_201_CREATED

        response = await client.post(f"{API}/api-keys", json=payload)
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_other_owners_keys_are_invisible(self, auth_client, make_user, session):
        client, _ = auth_client
        stranger = await make_user()
        api_key, _ = await _create_key(session, stranger)

        assert (await client.get(f"{API}/api-keys/{api_key.id}")).status_code == status.HTTP_404_NOT_FOUND
        assert (await client.delete(f"{API}/api-keys/{api_key.id}")).status_code == status.HTTP_404_NOT_FOUND
        assert (await client.get(f"{API}/api-keys")).json()["total"] == 0

    async def test_update(self, auth_client):
        client, _ = auth_client
        created = await client.post(
            f"{API}/api-keys", json={"name": "before", "scopes": [{"resource": "lists", "actions": ["read"]}]}
        )
        key_id = created.json()["id"]

        response = await client.patch(
            f"{API}/api-keys/{key_id}",
            json={"name": "after", "scopes": [{"resource": "media", "actions": ["read", "scan"]}]},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["name"] == "after"
        assert response.json()["scopes"] == [{"resource": "media", "actions": ["read", "scan"]}]

    async def test_revoked_key_cannot_be_reactivated(self, auth_client):
        client, _ = auth_client
        created = await client.post(
            f"{API}/api-keys", json={"name": "gone", "scopes": [{"resource": "lists", "actions": ["read"]}]}
        )
        key_id = created.json()["id"]

        revoked = await client.delete(f"{API}/api-keys/{key_id}")
        assert revoked.status_code == status.HTTP_200_OK
        assert revoked.json()["is_active"] is False
        assert revoked.json()["revoked_at"] is not None

        response = await client.patch(f"{API}/api-keys/{key_id}", json={"is_active": True})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_scope_catalogue(self, auth_client):
        client, _ = auth_client
        response = await client.get(f"{API}/api-keys/scopes")

        assert response.status_code == status.HTTP_200_OK
        resources = {entry["resource"] for entry in response.json()["scopes"]}
        assert {"*", "users", "lists", "media", "api_keys"} <= resources


class TestApiKeyAuthentication:
    async def test_header_authentication(self, client, make_user, session):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner, scopes=[Scope(resource="users", actions=["read"])])

        response = await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["auth_method"] == "api_key"
        assert body["api_key_id"] == api_key.id
        assert body["user"]["id"] == owner.id
        assert body["scopes"] == [{"resource": "users", "actions": ["read"]}]

    @pytest.mark.parametrize("location", ["apikey_header", "apikey_query", "api_key_query"])
    async def test_alternative_locations(self, client, make_user, session, location):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner)

        if location == "apikey_header":
            response = await client.get(f"{API}/auth/whoami", headers={"apikey": plaintext})
        elif location == "apikey_query":
            response = await client.get(f"{API}/auth/whoami", params={"apikey": plaintext})
        else:
            response = await client.get(f"{API}/auth/whoami", params={"api_key": plaintext})

        assert response.status_code == status.HTTP_200_OK

    async def test_invalid_key(self, client):
        response = await client.get(f"{API}/auth/whoami", headers={"X-API-Key": "sk_" + "0" * 64})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "invalid_api_key"

    async def test_revoked_key_stops_working(self, client, make_user, session):
        owner = await make_user()
        api_key, plaintext = await _create_key(session, owner)
        assert (await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})).status_code == 200

        await ApiKeyService.revoke(session, owner, api_key.id)
        await session.commit()

        response = await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_scope_is_enforced(self, client, make_user, session):
        owner = await make_user()
        _, lists_only = await _create_key(session, owner, scopes=[Scope(resource="lists", actions=["read"])])
        _, users_read = await _create_key(session, owner, scopes=[Scope(resource="users", actions=["read"])])

        denied = await client.get(f"{API}/users/me", headers={"X-API-Key": lists_only})
        allowed = await client.get(f"{API}/users/me", headers={"X-API-Key": users_read})

        assert denied.status_code == status.HTTP_403_FORBIDDEN
        assert denied.json()["code"] == "forbidden"
        assert allowed.status_code == status.HTTP_200_OK
        assert allowed.json()["id"] == owner.id

    async def test_wildcard_key(self, client, make_user, session):
        owner = await make_user()
        _, plaintext = await _create_key(session, owner, scopes=[Scope(resource="*", actions=["*"])])

        response = await client.get(f"{API}/users/me", headers={"X-API-Key": plaintext})
        assert response.status_code == status.HTTP_200_OK

    async def test_usage_statistics(self, auth_client, session):
        client, owner = auth_client
        api_key, plaintext = await _create_key(session, owner)

        for _ in range(2):
            await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})

        response = await client.get(f"{API}/api-keys/{api_key.id}/usage")
        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["total_requests"] == 2
        assert body["requests_today"] == 2
        assert body["requests_this_month"] == 2
        assert body["last_used_at"] is not None

    async def test_key_requests_are_rate_limited(self, client, make_user, session, monkeypatch):
        limited = RateLimiter(tiers={"api_key": "2/minute"}, clock=lambda: 1_699_999_990.0)
        monkeypatch.setattr("braidarr.features.auth.dependencies.rate_limiter", limited)

        owner = await make_user()
        _, plaintext = await _create_key(session, owner)

        for _ in range(2):
            assert (await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})).status_code == 200

        response = await client.get(f"{API}/auth/whoami", headers={"X-API-Key": plaintext})
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.headers["Retry-After"] == "50"
