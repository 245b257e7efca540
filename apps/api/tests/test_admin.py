import pytest
from sqlalchemy.future import select

from models.credit_transaction import ADMIN_ADJUSTMENT, CreditTransaction
from models.setting import Setting
from models.user import ROLE_ADMIN
from services.crypto import decrypt_secret
from services.image_processor import create_description_service
from services.settings_store import IDEOGRAM_API_KEY, get_setting


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(integration_client, create_user, auth_headers):
    client, _ = integration_client
    user_id = await create_user()

    for method, path in [
        ("get", "/admin/users"),
        ("get", "/admin/credits"),
        ("get", "/admin/payments"),
        ("get", "/admin/settings"),
    ]:
        response = await getattr(client, method)(path, headers=auth_headers(user_id))
        assert response.status_code == 403, path

    anonymous = await client.get("/admin/users")
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_patch_user_credits_goes_through_the_ledger(integration_client, create_user, auth_headers):
    client, session_maker = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    user_id = await create_user("member@example.com", credits=100)

    response = await client.patch(
        f"/admin/users/{user_id}",
        json={"credits": 40, "role": "ADMIN"},
        headers=auth_headers(admin_id),
    )

    assert response.status_code == 200
    updated = response.json()["user"]
    assert updated["credits"] == 40
    assert updated["role"] == "ADMIN"

    async with session_maker() as db:
        adjustments = (
            await db.execute(
                select(CreditTransaction).where(
                    CreditTransaction.user_id == user_id,
                    CreditTransaction.type == ADMIN_ADJUSTMENT,
                )
            )
        ).scalars().all()
    assert [entry.amount for entry in adjustments] == [-60]

    reconcile = await client.get(f"/admin/users/{user_id}/reconcile", headers=auth_headers(admin_id))
    assert reconcile.json() == {"user_id": user_id, "balance": 40, "ledger_total": 40, "consistent": True}


@pytest.mark.asyncio
async def test_disabled_user_is_locked_out(integration_client, create_user, auth_headers):
    client, _ = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    user_id = await create_user("member@example.com", credits=5)

    response = await client.patch(
        f"/admin/users/{user_id}",
        json={"is_active": False},
        headers=auth_headers(admin_id),
    )
    assert response.status_code == 200

    me = await client.get("/auth/me", headers=auth_headers(user_id))
    assert me.status_code == 403
    assert me.json()["detail"] == "Account is disabled"


@pytest.mark.asyncio
async def test_patch_unknown_user_is_404(integration_client, create_user, auth_headers):
    client, _ = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)

    response = await client.patch("/admin/users/missing", json={"credits": 5}, headers=auth_headers(admin_id))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_credit_adjustments(integration_client, create_user, auth_headers):
    client, _ = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    user_id = await create_user("member@example.com", credits=10)
    headers = auth_headers(admin_id)

    granted = await client.post(
        "/admin/credits",
        json={"user_id": user_id, "amount": 25, "description": "Goodwill"},
        headers=headers,
    )
    assert granted.status_code == 200
    assert granted.json() == {"ok": True, "user_id": user_id, "delta": 25, "balance_after": 35}

    overdraw = await client.post("/admin/credits", json={"user_id": user_id, "amount": -100}, headers=headers)
    assert overdraw.status_code == 402

    zero = await client.post("/admin/credits", json={"user_id": user_id, "amount": 0}, headers=headers)
    assert zero.status_code == 422

    listing = await client.get("/admin/credits", params={"user_id": user_id}, headers=headers)
    entries = listing.json()["transactions"]
    assert len(entries) == 2
    assert {entry["description"] for entry in entries} == {"Test grant", "Goodwill"}
    assert all(entry["user"]["email"] == "member@example.com" for entry in entries)


@pytest.mark.asyncio
async def test_user_search(integration_client, create_user, auth_headers):
    client, _ = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    await create_user("alice@example.com", name="Alice")
    await create_user("bob@example.com", name="Bob")

    response = await client.get("/admin/users", params={"search": "ALI"}, headers=auth_headers(admin_id))

    assert [user["email"] for user in response.json()["users"]] == ["alice@example.com"]


@pytest.mark.asyncio
async def test_settings_are_encrypted_masked_and_used(integration_client, create_user, auth_headers):
    client, session_maker = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    headers = auth_headers(admin_id)

    created = await client.post(
        "/admin/settings",
        json={"key": IDEOGRAM_API_KEY, "value": "ideo-secret-value-1234", "category": "API"},
        headers=headers,
    )
    assert created.status_code == 200
    assert created.json()["setting"]["value"] != "ideo-secret-value-1234"
    assert created.json()["setting"]["value"].endswith("1234")

    listing = await client.get("/admin/settings", headers=headers)
    assert [item["key"] for item in listing.json()["settings"]] == [IDEOGRAM_API_KEY]
    assert "ideo-secret-value" not in listing.text

    async with session_maker() as db:
        row = (await db.execute(select(Setting).where(Setting.key == IDEOGRAM_API_KEY))).scalar_one()
        assert row.value != "ideo-secret-value-1234"
        assert decrypt_secret(row.value) == "ideo-secret-value-1234"
        assert await get_setting(db, IDEOGRAM_API_KEY) == "ideo-secret-value-1234"

        service = await create_description_service(db)
        async with service:
            assert service.client is not None
            assert service.client.api_key == "ideo-secret-value-1234"

    ready = await client.get("/health/ready")
    assert ready.json() == {"ready": True}

    deleted = await client.delete("/admin/settings", params={"key": IDEOGRAM_API_KEY}, headers=headers)
    assert deleted.status_code == 200
    missing = await client.delete("/admin/settings", params={"key": IDEOGRAM_API_KEY}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_user_search_escapes_wildcards(integration_client, create_user, auth_headers):
    client, _ = integration_client
    admin_id = await create_user("admin@example.com", role=ROLE_ADMIN)
    await create_user("first_last@example.com")
    await create_user("firstxlast@example.com")

    anything = await client.get("/admin/users", params={"search": "%"}, headers=auth_headers(admin_id))
    underscore = await client.get("/admin/users", params={"search": "t_l"}, headers=auth_headers(admin_id))

    assert anything.json()["users"] == []
    assert [user["email"] for user in underscore.json()["users"]] == ["first_last@example.com"]
