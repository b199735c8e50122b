import csv
import io
import json
from datetime import datetime

from sqlalchemy import select

from app.authz.constants import PrivilegeKey
from app.authz.dates import today_in_estonia
from app.authz.db import session_scope
from app.authz.models import AuditEvent, InstitutionUser, SyncEvent
from app.authz.modules.departments.models import Department

OTHER_PIC = "37605030299"
THIRD_PIC = "49403136515"


def _department(app, institution_id, name):
    with session_scope(app) as s:
        d = Department(institution_id=institution_id, name=name)
        s.add(d)
        s.flush()
        return d.id


def test_list_paginates_and_defaults_to_active(client, app, tenant, add_member, auth_headers):
    add_member(tenant["institution_id"], OTHER_PIC, "Jaan", "Tamm")
    add_member(tenant["institution_id"], THIRD_PIC, "Kati", "Karu", deactivation_date=today_in_estonia())

    r = client.get("/api/institution-users", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 200
    body = r.json
    assert body["meta"]["total"] == 2
    assert body["meta"]["per_page"] == 10
    assert {iu["status"] for iu in body["data"]} == {"ACTIVE"}


def test_list_filters_by_status_role_and_name(client, app, tenant, add_member, add_role, auth_headers):
    role_id = add_role(tenant["institution_id"], "Tõlkija")
    add_member(tenant["institution_id"], OTHER_PIC, "Jaan", "Tamm", role_ids=[role_id])
    add_member(tenant["institution_id"], THIRD_PIC, "Kati", "Karu", deactivation_date=today_in_estonia())
    headers = auth_headers(tenant["institution_user_id"])

    r = client.get("/api/institution-users?statuses[]=DEACTIVATED", headers=headers)
    assert [iu["user"]["surname"] for iu in r.json["data"]] == ["Karu"]

    r = client.get(f"/api/institution-users?roles[]={role_id}", headers=headers)
    assert [iu["user"]["surname"] for iu in r.json["data"]] == ["Tamm"]

    r = client.get("/api/institution-users", query_string={"fullname": "mari maa"}, headers=headers)
    assert [iu["user"]["surname"] for iu in r.json["data"]] == ["Maasikas"]


def test_list_rejects_bad_per_page(client, tenant, auth_headers):
    r = client.get("/api/institution-users?per_page=7", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 422
    assert "per_page" in r.json["errors"]


def test_list_sorted_by_name_desc(client, tenant, add_member, auth_headers):
    add_member(tenant["institution_id"], OTHER_PIC, "Aadu", "Tamm")
    r = client.get(
        "/api/institution-users?sort_by=name&sort_order=desc",
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert [iu["user"]["forename"] for iu in r.json["data"]] == ["Mari", "Aadu"]


def test_detail_of_other_tenant_is_404(client, tenant, other_tenant, auth_headers):
    r = client.get(
        f"/api/institution-users/{other_tenant['institution_user_id']}",
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 404


def test_detail_self_without_view_user(client, tenant, auth_headers):
    iu_id = tenant["institution_user_id"]
    r = client.get(f"/api/institution-users/{iu_id}", headers=auth_headers(iu_id, privileges=[]))
    assert r.status_code == 200
    assert r.json["data"]["id"] == iu_id


def test_update_contact_and_department(client, app, tenant, add_member, auth_headers):
    member_id = add_member(tenant["institution_id"])
    dep_id = _department(app, tenant["institution_id"], "Tõlkeosakond")
    r = client.put(
        f"/api/institution-users/{member_id}",
        json={"email": "jaan@example.com", "phone": "+372 5123456", "department_id": dep_id, "user": {"forename": "Jaanus"}},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 200, r.json
    data = r.json["data"]
    assert data["email"] == "jaan@example.com"
    assert data["department"]["id"] == dep_id
    assert data["user"]["forename"] == "Jaanus"

    with session_scope(app) as s:
        ev = s.scalars(select(AuditEvent).where(AuditEvent.event_type == "MODIFY_OBJECT")).one()
        params = json.loads(ev.event_parameters_json)
        assert params["object_type"] == "INSTITUTION_USER"
        assert params["post_modification_subset"]["email"] == "jaan@example.com"
        assert s.scalars(select(SyncEvent).where(SyncEvent.institution_user_id == member_id)).first() is not None


def test_update_rejects_invalid_phone(client, tenant, add_member, auth_headers):
    member_id = add_member(tenant["institution_id"])
    r = client.put(
        f"/api/institution-users/{member_id}",
        json={"phone": "12345"},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 422
    assert "phone" in r.json["errors"]


def test_worktime_requires_worktime_privilege(client, tenant, add_member, auth_headers):
    member_id = add_member(tenant["institution_id"])
    worktime = {"worktime_timezone": "Europe/Tallinn"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday"):
        worktime[f"{day}_worktime_start"] = "08:00:00"
        worktime[f"{day}_worktime_end"] = "16:00:00"
    for day in ("saturday", "sunday"):
        worktime[f"{day}_worktime_start"] = None
        worktime[f"{day}_worktime_end"] = None

    r = client.put(
        f"/api/institution-users/{member_id}",
        json=worktime,
        headers=auth_headers(tenant["institution_user_id"], privileges=[PrivilegeKey.EDIT_USER]),
    )
    assert r.status_code == 403

    r = client.put(
        f"/api/institution-users/{member_id}",
        json=worktime,
        headers=auth_headers(tenant["institution_user_id"], privileges=[PrivilegeKey.EDIT_USER_WORKTIME]),
    )
    assert r.status_code == 200
    assert r.json["data"]["monday_worktime_start"] == "08:00:00"
    assert r.json["data"]["sunday_worktime_end"] is None


def test_cannot_remove_root_role_from_only_holder(client, tenant, add_role, auth_headers):
    role_id = add_role(tenant["institution_id"], "Tõlkija")
    r = client.put(
        f"/api/institution-users/{tenant['institution_user_id']}",
        json={"roles": [role_id]},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 422
    assert r.json["errors"]["roles"] == ["Can't remove last user with root role"]


def test_update_current_user_ignores_privileged_fields(client, app, tenant, add_role, auth_headers):
    role_id = add_role(tenant["institution_id"], "Tõlkija")
    r = client.put(
        "/api/institution-users",
        json={"email": "mari@example.com", "roles": [role_id]},
        headers=auth_headers(tenant["institution_user_id"], privileges=[]),
    )
    assert r.status_code == 200
    assert r.json["data"]["email"] == "mari@example.com"
    assert [role["id"] for role in r.json["data"]["roles"]] == [tenant["root_role_id"]]


def test_export_csv(client, app, tenant, add_member, add_role, auth_headers):
    role_a = add_role(tenant["institution_id"], "Projektijuht")
    role_b = add_role(tenant["institution_id"], "Tõlkija")
    add_member(tenant["institution_id"], OTHER_PIC, "Jaan", "Tamm", role_ids=[role_b, role_a], email="jaan@example.com")
    add_member(tenant["institution_id"], THIRD_PIC, "Kati", "Karu", archived_at=datetime(2024, 1, 1))

    r = client.get("/api/institution-users/export-csv", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "exported_users.csv" in r.headers["Content-Disposition"]

    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8")), delimiter=";"))
    assert rows[0] == ["Isikukood", "Nimi", "Meiliaadress", "Telefoninumber", "Üksus", "Roll"]
    by_pic = {row[0]: row for row in rows[1:]}
    assert set(by_pic) == {"39511267470", OTHER_PIC}
    assert by_pic[OTHER_PIC][1] == "Jaan Tamm"
    assert by_pic[OTHER_PIC][5] == "Projektijuht, Tõlkija"

    with session_scope(app) as s:
        assert s.scalars(select(AuditEvent).where(AuditEvent.event_type == "EXPORT_INSTITUTION_USERS")).one()


def test_export_without_privilege_records_failure(client, app, tenant, auth_headers):
    r = client.get(
        "/api/institution-users/export-csv",
        headers=auth_headers(tenant["institution_user_id"], privileges=[PrivilegeKey.VIEW_USER]),
    )
    assert r.status_code == 403
    with session_scope(app) as s:
        ev = s.scalars(select(AuditEvent)).one()
        assert ev.event_type == "EXPORT_INSTITUTION_USERS"
        assert ev.failure_type == "FORBIDDEN"
        assert ev.acting_institution_user_id == tenant["institution_user_id"]


def test_soft_deleted_membership_is_hidden(client, app, tenant, add_member, auth_headers):
    member_id = add_member(tenant["institution_id"])
    with session_scope(app) as s:
        s.get(InstitutionUser, member_id).soft_delete()
    r = client.get(f"/api/institution-users/{member_id}", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 404
