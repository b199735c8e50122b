from sqlalchemy import delete, func, select

from app.authz.constants import PrivilegeKey
from app.authz.db import session_scope
from app.authz.modules.roles.service import ensure_privileges
from app.authz.models import InstitutionUser, InstitutionUserRole, Privilege, PrivilegeRole, Role, SyncEvent

OTHER_PIC = "37605030299"


def _create_role(client, headers, institution_id, name="Tõlkija", privileges=("VIEW_USER",)):
    return client.post(
        "/api/roles",
        json={"institution_id": institution_id, "name": name, "privileges": list(privileges)},
        headers=headers,
    )


def test_create_and_list_roles(client, tenant, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    r = _create_role(client, headers, tenant["institution_id"], privileges=["VIEW_USER", "EXPORT_USER"])
    assert r.status_code == 201, r.json
    assert sorted(p["key"] for p in r.json["data"]["privileges"]) == ["EXPORT_USER", "VIEW_USER"]

    r = client.get(f"/api/roles?institution_id={tenant['institution_id']}", headers=headers)
    assert r.status_code == 200
    assert [role["name"] for role in r.json["data"]] == ["Asutuse peakasutaja", "Tõlkija"]


def test_list_roles_of_other_institution_is_forbidden(client, tenant, other_tenant, auth_headers):
    r = client.get(f"/api/roles?institution_id={other_tenant['institution_id']}", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 403


def test_create_role_validation(client, tenant, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    r = _create_role(client, headers, tenant["institution_id"], privileges=[])
    assert r.status_code == 422
    assert "privileges" in r.json["errors"]

    r = _create_role(client, headers, tenant["institution_id"], privileges=["NOT_A_PRIVILEGE"])
    assert r.status_code == 422

    r = _create_role(client, headers, tenant["institution_id"], name="Asutuse peakasutaja")
    assert r.status_code == 422
    assert "name" in r.json["errors"]


def test_create_role_for_other_institution_is_forbidden(client, tenant, other_tenant, auth_headers):
    r = _create_role(client, auth_headers(tenant["institution_user_id"]), other_tenant["institution_id"])
    assert r.status_code == 403


def test_update_role_privileges(client, app, tenant, add_member, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    role_id = _create_role(client, headers, tenant["institution_id"]).json["data"]["id"]
    add_member(tenant["institution_id"], OTHER_PIC, role_ids=[role_id])

    r = client.put(f"/api/roles/{role_id}", json={"name": "Toimetaja", "privileges": ["EDIT_USER"]}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Toimetaja"
    assert [p["key"] for p in r.json["data"]["privileges"]] == ["EDIT_USER"]


def test_root_role_is_protected(client, tenant, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    root_id = tenant["root_role_id"]

    r = client.put(f"/api/roles/{root_id}", json={"privileges": ["VIEW_USER"]}, headers=headers)
    assert r.status_code == 422
    assert r.json["message"] == "Can't modify or delete root role"

    r = client.put(f"/api/roles/{root_id}", json={"name": "Peakasutaja"}, headers=headers)
    assert r.status_code == 200

    r = client.delete(f"/api/roles/{root_id}", headers=headers)
    assert r.status_code == 422


def test_delete_role_removes_memberships(client, app, tenant, add_member, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    role_id = _create_role(client, headers, tenant["institution_id"]).json["data"]["id"]
    member_id = add_member(tenant["institution_id"], OTHER_PIC, role_ids=[role_id])

    r = client.delete(f"/api/roles/{role_id}", headers=headers)
    assert r.status_code == 200

    with session_scope(app) as s:
        assert s.get(Role, role_id).deleted_at is not None
        assert s.scalars(select(InstitutionUserRole).where(InstitutionUserRole.role_id == role_id)).all() == []
        assert s.get(InstitutionUser, member_id).roles == []
    assert client.get(f"/api/roles/{role_id}", headers=headers).status_code == 404


def test_privileges_catalog(client, tenant, auth_headers):
    r = client.get("/api/privileges", headers=auth_headers(tenant["institution_user_id"]))
    keys = [p["key"] for p in r.json["data"]]
    assert keys == sorted(p.value for p in PrivilegeKey)

    r = client.get("/api/privileges", headers=auth_headers(tenant["institution_user_id"], privileges=[]))
    assert r.status_code == 200
    assert r.json["data"] == []


def test_seeding_privileges_tops_up_root_roles(app, tenant):
    root_id = tenant["root_role_id"]
    with session_scope(app) as s:
        stale = s.scalar(select(Privilege.id).where(Privilege.key == PrivilegeKey.EXPORT_USER.value))
        s.execute(delete(PrivilegeRole).where(PrivilegeRole.role_id == root_id, PrivilegeRole.privilege_id == stale))
        s.expire_all()
        assert PrivilegeKey.EXPORT_USER.value not in s.get(Role, root_id).privilege_keys
        before = s.scalar(select(func.count()).select_from(SyncEvent))

    with session_scope(app) as s:
        ensure_privileges(s)

    with session_scope(app) as s:
        assert sorted(s.get(Role, root_id).privilege_keys) == sorted(p.value for p in PrivilegeKey)
        assert s.scalar(select(func.count()).select_from(SyncEvent)) > before
        events = s.scalars(select(SyncEvent).where(SyncEvent.institution_user_id == tenant["institution_user_id"])).all()
        assert events


def test_seeding_privileges_is_idempotent(app, tenant):
    with session_scope(app) as s:
        before = s.scalar(select(func.count()).select_from(SyncEvent))
        ensure_privileges(s)
    with session_scope(app) as s:
        assert s.scalar(select(func.count()).select_from(SyncEvent)) == before
        assert s.scalar(select(func.count()).select_from(Privilege)) == len(PrivilegeKey)
