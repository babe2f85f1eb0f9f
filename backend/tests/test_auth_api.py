"""
Test authentication API endpoints.
"""

import pytest
from httpx import AsyncClient

from classroom.core.security import create_student_token

from conftest import API


@pytest.mark.asyncio
class TestAuthEndpoints:
    """Test tutor authentication and token checks."""

    # ========== TUTOR AUTH TESTS ==========

    async def test_register_tutor_success(self, async_client: AsyncClient):
        """Test successful tutor registration."""
        response = await async_client.post(
            f"{API}/auth/tutor/register",
            json={
                "email": "new_tutor@example.com",
                "password": "securepass123",
                "full_name": "New Tutor",
                "organization_name": "Westside Prep",
            }
        )
        assert response.status_code == 201
        data = response.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"
        assert data["user_type"] == "tutor"

    async def test_register_tutor_duplicate_email(self, async_client: AsyncClient):
        """Test registration with duplicate email fails."""
        payload = {"email": "duplicate@example.com", "password": "pass123", "full_name": "First User"}
        await async_client.post(f"{API}/auth/tutor/register", json=payload)

        response = await async_client.post(
            f"{API}/auth/tutor/register",
            json={**payload, "full_name": "Second User"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    async def test_register_tutor_missing_fields(self, async_client: AsyncClient):
        """Test registration with missing fields fails."""
        response = await async_client.post(
            f"{API}/auth/tutor/register",
            json={"email": "incomplete@example.com"}
        )
        assert response.status_code == 422

    async def test_login_tutor_success(self, async_client: AsyncClient):
        """Test successful tutor login."""
        await async_client.post(
            f"{API}/auth/tutor/register",
            json={"email": "login_test@example.com", "password": "loginpass123", "full_name": "Login Test"}
        )

        response = await async_client.post(
            f"{API}/auth/tutor/login",
            json={"email": "login_test@example.com", "password": "loginpass123"}
        )
        assert response.status_code == 200
        assert "access_token" in response.json()

    async def test_login_tutor_wrong_password(self, async_client: AsyncClient):
        """Test login with wrong password fails."""
        await async_client.post(
            f"{API}/auth/tutor/register",
            json={"email": "wrong_pass@example.com", "password": "correctpass", "full_name": "Wrong Pass"}
        )

        response = await async_client.post(
            f"{API}/auth/tutor/login",
            json={"email": "wrong_pass@example.com", "password": "wrongpass"}
        )
        assert response.status_code == 401

    async def test_get_tutor_me(self, async_client: AsyncClient, tutor_headers: dict):
        """Test the current tutor can read their profile."""
        response = await async_client.get(f"{API}/auth/tutor/me", headers=tutor_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "tutor@example.com"
        assert data["org_id"] > 0

    # ========== TOKEN CHECKS ==========

    async def test_tutor_routes_require_token(self, async_client: AsyncClient):
        """Test tutor endpoints reject anonymous callers."""
        response = await async_client.get(f"{API}/sessions")
        assert response.status_code == 401

    async def test_invalid_token_rejected(self, async_client: AsyncClient):
        """Test a malformed bearer token is rejected."""
        response = await async_client.get(
            f"{API}/auth/tutor/me",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    async def test_student_token_cannot_use_tutor_routes(self, async_client: AsyncClient):
        """Test a student session token is not a tutor token."""
        token = create_student_token(student_id=1, session_id=1)
        response = await async_client.get(f"{API}/sessions", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_tutor_token_cannot_use_student_routes(self, async_client: AsyncClient, tutor_headers: dict):
        """Test a tutor token is not a student token."""
        response = await async_client.get(f"{API}/student/test/questions", headers=tutor_headers)
        assert response.status_code == 401
