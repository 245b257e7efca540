from unittest.mock import patch

import pytest
from fastapi import HTTPException
from jose import jwt

from config import settings
from models.setting import Setting
from services.crypto import SecretDecryptionError, decrypt_secret, encrypt_secret, mask_secret
from services.passwords import hash_password, verify_password
from services.session_token import (
    SESSION_ISSUER,
    SESSION_TOKEN_TYPE,
    create_session_token,
    decode_session_token,
)
from services.settings_store import get_setting


def test_secret_from_another_key_cannot_be_decrypted():
    token = encrypt_secret("sk-live-abcdef")
    assert token != "sk-live-abcdef"

    with patch.object(settings, "ENCRYPTION_KEY", "a-completely-different-encryption-key"):
        with pytest.raises(SecretDecryptionError):
            decrypt_secret(token)


def test_mask_secret():
    assert mask_secret("abcdefgh") == "****efgh"
    assert mask_secret("abc") == "***"
    assert mask_secret("") == ""


@pytest.mark.asyncio
async def test_undecryptable_setting_falls_back_to_environment(session_maker):
    with patch.object(settings, "ENCRYPTION_KEY", "key-used-before-rotation-0000000000"):
        stale = encrypt_secret("old-ideogram-key")

    async with session_maker() as db:
        db.add(Setting(key="IDEOGRAM_API_KEY", value=stale, category="API", is_active=True))
        await db.commit()

        with patch.object(settings, "IDEOGRAM_API_KEY", "env-ideogram-key"):
            assert await get_setting(db, "IDEOGRAM_API_KEY") == "env-ideogram-key"


def test_password_hashing():
    hashed = hash_password("hunter2-but-longer")
    assert verify_password("hunter2-but-longer", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", None)

    with pytest.raises(HTTPException) as exc_info:
        hash_password("x" * 73)
    assert exc_info.value.status_code == 422


def test_session_token_identifies_only_the_account():
    issued = create_session_token("user-1")
    claims = decode_session_token(issued["token"])
    assert claims.user_id == "user-1"
    assert claims.expires_at == issued["expires_at"]

    payload = jwt.get_unverified_claims(issued["token"])
    assert payload["iss"] == SESSION_ISSUER
    assert "email" not in payload
    assert "role" not in payload


@pytest.mark.parametrize(
    "claims",
    [
        {"iss": SESSION_ISSUER, "sub": "user-1", "type": "other"},
        {"iss": "some-other-service", "sub": "user-1", "type": SESSION_TOKEN_TYPE},
        {"iss": SESSION_ISSUER, "sub": "", "type": SESSION_TOKEN_TYPE},
    ],
)
def test_session_token_rejects_foreign_tokens(claims):
    foreign = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(ValueError):
        decode_session_token(foreign)
