"""Tests for auth dependencies — get_current_user edge cases."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from jose import jwt

from launchkit.auth.jwt import create_access_token
from launchkit.config import settings

PROTECTED_URL = "/api/v1/quota"


class TestGetCurrentUser:
    """Test get_current_user dependency via the quota endpoint."""

    @pytest.mark.asyncio
    async def test_valid_token_accepted(self, client: AsyncClient):
        token = create_access_token(str(uuid.uuid4()))
        response = await client.get(PROTECTED_URL, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_header_is_401(self, client: AsyncClient):
        response = await client.get(PROTECTED_URL)
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, client: AsyncClient):
        token = create_access_token(str(uuid.uuid4()), expires_delta=timedelta(seconds=-1))
        response = await client.get(PROTECTED_URL, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_format(self, client: AsyncClient):
        response = await client.get(PROTECTED_URL, headers={"Authorization": "Bearer not.a.valid.jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_non_uuid_subject_rejected(self, client: AsyncClient):
        token = create_access_token("not-a-uuid")
        response = await client.get(PROTECTED_URL, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_subject_rejected(self, client: AsyncClient):
        token = jwt.encode(
            {"aud": settings.jwt_audience, "role": "authenticated"},
            settings.supabase_jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        response = await client.get(PROTECTED_URL, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
