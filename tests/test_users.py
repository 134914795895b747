"""
tests/test_users.py
Tests for the per-role profile: read, partial update, sanitizing, audit.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog, PatientProfile, User
from tests.conftest import auth_headers, refetch


@pytest.mark.asyncio
async def test_get_profile_requires_auth(client: AsyncClient):
    response = await client.get("/users/me/profile")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_patient_profile(client: AsyncClient, patient_user: User):
    response = await client.get("/users/me/profile", headers=auth_headers(patient_user))
    assert response.status_code == 200
    data = response.json()
    assert data["userId"] == str(patient_user.id)
    assert data["role"] == "patient"
    assert data["fullName"] == patient_user.name


@pytest.mark.asyncio
async def test_update_profile_fields(client: AsyncClient, patient_user: User, db: AsyncSession):
    response = await client.put(
        "/users/me/profile",
        headers=auth_headers(patient_user),
        json={
            "phone": "+1 (555) 010-2030",
            "dateOfBirth": "1985-04-12",
            "gender": "female",
            "nationalId": "X123",
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["phone"] == "+1 (555) 010-2030"
    assert data["dateOfBirth"] == "1985-04-12"
    assert data["gender"] == "female"

    profile = await refetch(db, PatientProfile, patient_user.id)
    assert profile.national_id == "X123"


@pytest.mark.asyncio
async def test_update_only_touches_sent_fields(client: AsyncClient, patient_user: User):
    headers = auth_headers(patient_user)
    await client.put("/users/me/profile", headers=headers, json={"residentialAddress": "12 Elm St"})
    response = await client.put("/users/me/profile", headers=headers, json={"nationalId": "N-1"})
    data = response.json()
    assert data["residentialAddress"] == "12 Elm St"
    assert data["nationalId"] == "N-1"


@pytest.mark.asyncio
async def test_update_strips_html(client: AsyncClient, donor_user: User):
    response = await client.put(
        "/users/me/profile",
        headers=auth_headers(donor_user),
        json={"fullName": "<b>Dana</b> Donor", "residentialAddress": "<script>x</script>5 Oak Rd"},
    )
    assert response.status_code == 200
    assert response.json()["fullName"] == "Dana Donor"
    assert response.json()["residentialAddress"] == "x5 Oak Rd"


@pytest.mark.asyncio
async def test_update_rejects_bad_phone(client: AsyncClient, patient_user: User):
    response = await client.put(
        "/users/me/profile", headers=auth_headers(patient_user), json={"phone": "12-34"}
    )
    assert response.status_code == 422
    assert "phone" in response.json()["errors"]


@pytest.mark.asyncio
async def test_update_rejects_future_birth_date(client: AsyncClient, patient_user: User):
    response = await client.put(
        "/users/me/profile", headers=auth_headers(patient_user), json={"dateOfBirth": "2999-01-01"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_empty_body_is_noop(client: AsyncClient, sponsor_user: User, db: AsyncSession):
    response = await client.put("/users/me/profile", headers=auth_headers(sponsor_user), json={})
    assert response.status_code == 200
    entries = (
        await db.execute(select(AuditLog).where(AuditLog.action == "PROFILE_UPDATED"))
    ).scalars().all()
    assert entries == []


@pytest.mark.asyncio
async def test_profile_update_is_audited(client: AsyncClient, patient_user: User, db: AsyncSession):
    await client.put("/users/me/profile", headers=auth_headers(patient_user), json={"phone": "5550102030"})
    entry = (
        await db.execute(select(AuditLog).where(AuditLog.action == "PROFILE_UPDATED"))
    ).scalar_one()
    assert entry.user_id == patient_user.id
    assert entry.audit_metadata == {"fields": ["phone"]}


@pytest.mark.asyncio
async def test_hospital_has_no_editable_profile(client: AsyncClient, hospital_user: User):
    headers = auth_headers(hospital_user)
    assert (await client.get("/users/me/profile", headers=headers)).status_code == 200
    response = await client.put("/users/me/profile", headers=headers, json={"fullName": "City"})
    assert response.status_code == 403
