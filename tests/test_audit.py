"""
tests/test_audit.py
Tests for the audit trail: entries are written with the business change,
and a failing audit write never fails the operation it describes.
"""

import logging

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit import service as audit_service
from services.audit.service import AuditAction, record
from shared.models.models import AuditLog, Case, User
from tests.conftest import auth_headers, refetch


@pytest.mark.asyncio
async def test_record_writes_entry(session_factory, patient_user: User):
    async with session_factory() as session:
        outcome = await record(
            session, patient_user, AuditAction.PROFILE_UPDATED, metadata={"fields": ["phone"]}
        )
        await session.commit()

    assert outcome.written is True
    async with session_factory() as session:
        entry = await session.get(AuditLog, outcome.entry_id)
        assert entry.action == "PROFILE_UPDATED"
        assert entry.role == patient_user.role
        assert entry.audit_metadata == {"fields": ["phone"]}


@pytest.mark.asyncio
async def test_record_reports_failure_instead_of_raising(session_factory, patient_user: User, caplog):
    async with session_factory() as session:
        with caplog.at_level(logging.ERROR, logger="services.audit.service"):
            outcome = await record(session, patient_user, "NOT_A_REAL_ACTION")
        await session.rollback()

    assert outcome.written is False
    assert outcome.error
    assert any("Audit write failed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_failed_audit_does_not_fail_case_update(
    client: AsyncClient, case: Case, patient_user: User, db: AsyncSession, monkeypatch
):
    def broken(*args, **kwargs):
        raise RuntimeError("audit store offline")

    monkeypatch.setattr(audit_service, "_build_entry", broken)

    response = await client.patch(
        f"/cases/{case.id}", headers=auth_headers(patient_user), json={"notes": "still saved"}
    )
    assert response.status_code == 200

    fresh = await refetch(db, Case, case.id)
    assert fresh.notes == "still saved"
    assert (await db.execute(select(AuditLog))).scalars().all() == []


@pytest.mark.asyncio
async def test_rejected_audit_insert_keeps_case_update(
    client: AsyncClient, case: Case, patient_user: User, db: AsyncSession, monkeypatch
):
    build_entry = audit_service._build_entry

    def without_action(*args, **kwargs):
        entry = build_entry(*args, **kwargs)
        entry.action = None
        return entry

    monkeypatch.setattr(audit_service, "_build_entry", without_action)

    response = await client.patch(
        f"/cases/{case.id}", headers=auth_headers(patient_user), json={"notes": "kept"}
    )
    assert response.status_code == 200

    fresh = await refetch(db, Case, case.id)
    assert fresh.notes == "kept"
    assert (await db.execute(select(AuditLog))).scalars().all() == []


@pytest.mark.asyncio
async def test_failed_audit_does_not_fail_contribution(
    client: AsyncClient, case: Case, sponsor_user: User, db: AsyncSession, monkeypatch
):
    def broken(*args, **kwargs):
        raise RuntimeError("audit store offline")

    monkeypatch.setattr(audit_service, "_build_entry", broken)

    response = await client.post(
        "/sponsors/contributions",
        headers=auth_headers(sponsor_user),
        json={"caseId": str(case.id), "amount": "100"},
    )
    assert response.status_code == 201
    fresh = await refetch(db, Case, case.id)
    assert fresh.funding_amount == 100


@pytest.mark.asyncio
async def test_failed_operation_leaves_no_audit_entry(
    client: AsyncClient, case: Case, hospital_user: User, db: AsyncSession
):
    """Audit entries commit with the change they describe; a rejected change leaves none."""
    response = await client.patch(
        f"/cases/{case.id}", headers=auth_headers(hospital_user), json={"status": "transplanted"}
    )
    assert response.status_code == 409
    assert (await db.execute(select(AuditLog))).scalars().all() == []
