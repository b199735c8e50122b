from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.authz import dates
from app.authz.constants import InstitutionUserStatus
from app.authz.dates import add_years, is_future_estonian_date, parse_iso_date, today_in_estonia
from app.authz.db import session_scope
from app.authz.models import InstitutionUser
from app.authz.modules.institution_users.status import resolve_status, status_clause

OTHER_PIC = "37605030299"
TODAY = date(2024, 6, 10)


def test_resolve_status_archived_wins():
    assert resolve_status(datetime(2024, 1, 1), date(2020, 1, 1)) == InstitutionUserStatus.ARCHIVED


def test_resolve_status_deactivated_on_and_after_date():
    today = date(2024, 6, 10)
    assert resolve_status(None, date(2024, 6, 10), today) == InstitutionUserStatus.DEACTIVATED
    assert resolve_status(None, date(2024, 6, 1), today) == InstitutionUserStatus.DEACTIVATED


def test_resolve_status_future_deactivation_is_still_active():
    today = date(2024, 6, 10)
    assert resolve_status(None, date(2024, 6, 11), today) == InstitutionUserStatus.ACTIVE
    assert resolve_status(None, None, today) == InstitutionUserStatus.ACTIVE


def test_add_years_handles_leap_day():
    assert add_years(date(2024, 2, 29), 1) == date(2025, 3, 1)
    assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)
    assert add_years(date(2024, 3, 1), 1) == date(2025, 3, 1)


def test_is_future_estonian_date():
    today = today_in_estonia()
    assert is_future_estonian_date(today + timedelta(days=1))
    assert not is_future_estonian_date(today)


def test_parse_iso_date_is_strict():
    assert parse_iso_date("2024-02-29") == date(2024, 2, 29)
    assert parse_iso_date("2023-02-29") is None
    assert parse_iso_date("2024-2-9") is None
    assert parse_iso_date("2024-02-29T00:00:00") is None
    assert parse_iso_date(None) is None


def _freeze_clock(monkeypatch, instant):
    class _Frozen(datetime):
        @classmethod
        def now(cls, tz=None):
            return instant.astimezone(tz) if tz else instant.replace(tzinfo=None)

    monkeypatch.setattr(dates, "datetime", _Frozen)


@pytest.mark.parametrize(
    "instant, expected",
    [
        # EEST, UTC+3
        (datetime(2024, 6, 9, 20, 59, tzinfo=timezone.utc), date(2024, 6, 9)),
        (datetime(2024, 6, 9, 21, 30, tzinfo=timezone.utc), date(2024, 6, 10)),
        # EET, UTC+2
        (datetime(2024, 1, 9, 21, 59, tzinfo=timezone.utc), date(2024, 1, 9)),
        (datetime(2024, 1, 9, 22, 0, tzinfo=timezone.utc), date(2024, 1, 10)),
    ],
)
def test_today_follows_tallinn_midnight(monkeypatch, instant, expected):
    _freeze_clock(monkeypatch, instant)
    assert today_in_estonia() == expected
    assert is_future_estonian_date(expected + timedelta(days=1))
    assert not is_future_estonian_date(expected)


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({}, InstitutionUserStatus.ACTIVE),
        ({"deactivation_date": TODAY + timedelta(days=1)}, InstitutionUserStatus.ACTIVE),
        ({"deactivation_date": TODAY}, InstitutionUserStatus.DEACTIVATED),
        ({"deactivation_date": TODAY - timedelta(days=30)}, InstitutionUserStatus.DEACTIVATED),
        ({"archived_at": datetime(2024, 5, 1)}, InstitutionUserStatus.ARCHIVED),
        (
            {"archived_at": datetime(2024, 5, 1), "deactivation_date": TODAY - timedelta(days=30)},
            InstitutionUserStatus.ARCHIVED,
        ),
        (
            {"archived_at": datetime(2024, 5, 1), "deactivation_date": TODAY + timedelta(days=30)},
            InstitutionUserStatus.ARCHIVED,
        ),
    ],
)
def test_status_clause_agrees_with_resolve_status(app, tenant, add_member, fields, expected):
    member_id = add_member(tenant["institution_id"], OTHER_PIC, **fields)

    with session_scope(app) as s:
        iu = s.get(InstitutionUser, member_id)
        assert resolve_status(iu.archived_at, iu.deactivation_date, TODAY) == expected
        for status in InstitutionUserStatus:
            matched = s.scalars(
                select(InstitutionUser.id).where(InstitutionUser.id == member_id, status_clause(status, TODAY))
            ).all()
            assert (matched == [member_id]) == (status == expected), status
