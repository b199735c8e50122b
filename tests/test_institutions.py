from app.authz.constants import PrivilegeKey
from app.authz.dates import today_in_estonia

OTHER_PIC = "37605030299"


def test_institutions_list_only_active_memberships(client, tenant, other_tenant, add_member, make_token):
    add_member(tenant["institution_id"], OTHER_PIC)
    add_member(other_tenant["institution_id"], OTHER_PIC, deactivation_date=today_in_estonia())
    token = make_token({"personalIdentificationCode": OTHER_PIC})

    r = client.get("/api/institutions", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert [i["id"] for i in r.json["data"]] == [tenant["institution_id"]]


def test_institution_detail_and_other_tenant(client, tenant, other_tenant, auth_headers):
    headers = auth_headers(tenant["institution_user_id"])
    r = client.get(f"/api/institutions/{tenant['institution_id']}", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Tõlkebüroo"

    r = client.get(f"/api/institutions/{other_tenant['institution_id']}", headers=headers)
    assert r.status_code == 404


def test_update_institution(client, tenant, auth_headers):
    r = client.put(
        f"/api/institutions/{tenant['institution_id']}",
        json={"name": "Tõlkebüroo OÜ", "short_name": "TBO", "email": "info@example.com", "phone": "+372 5123456"},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 200, r.json
    assert r.json["data"]["short_name"] == "TBO"


def test_update_institution_validation(client, tenant, auth_headers):
    r = client.put(
        f"/api/institutions/{tenant['institution_id']}",
        json={"short_name": "TOOLONG", "email": "nope"},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 422
    assert set(r.json["errors"]) == {"short_name", "email"}


def test_institution_worktime_needs_privilege(client, tenant, auth_headers):
    payload = {"worktime_timezone": "Europe/Tallinn"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"):
        payload[f"{day}_worktime_start"] = None
        payload[f"{day}_worktime_end"] = None
    payload["monday_worktime_start"] = "09:00:00"
    payload["monday_worktime_end"] = "17:00:00"

    r = client.put(
        f"/api/institutions/{tenant['institution_id']}",
        json=payload,
        headers=auth_headers(tenant["institution_user_id"], privileges=[PrivilegeKey.EDIT_USER]),
    )
    assert r.status_code == 403

    r = client.put(
        f"/api/institutions/{tenant['institution_id']}",
        json=payload,
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 200
    assert r.json["data"]["monday_worktime_end"] == "17:00:00"


def test_incomplete_worktime_is_rejected(client, tenant, auth_headers):
    r = client.put(
        f"/api/institutions/{tenant['institution_id']}",
        json={"worktime_timezone": "Europe/Tallinn", "monday_worktime_start": "09:00:00"},
        headers=auth_headers(tenant["institution_user_id"]),
    )
    assert r.status_code == 422
    assert "tuesday_worktime_start" in r.json["errors"]
