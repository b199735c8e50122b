from app.authz.constants import PrivilegeKey
from app.authz.dates import today_in_estonia

MAIN_PIC = "39511267470"
OTHER_PIC = "37605030299"
THIRD_PIC = "49403136515"


def _sso_headers(make_token):
    return {"Authorization": f"Bearer {make_token(azp='sso-internal')}"}


def test_only_the_sso_internal_client_may_ask(client, tenant, make_token, auth_headers):
    r = client.get(f"/api/jwt-claims?personal_identification_code={MAIN_PIC}", headers=auth_headers(tenant["institution_user_id"]))
    assert r.status_code == 403

    assert client.get(f"/api/jwt-claims?personal_identification_code={MAIN_PIC}").status_code == 401


def test_claims_without_institution(client, tenant, make_token):
    r = client.get(f"/api/jwt-claims?personal_identification_code={MAIN_PIC}", headers=_sso_headers(make_token))
    assert r.status_code == 200
    assert r.json == {
        "personalIdentificationCode": MAIN_PIC,
        "userId": tenant["user_id"],
        "forename": "Mari",
        "surname": "Maasikas",
    }


def test_claims_with_institution(client, tenant, add_role, add_member, make_token):
    role_id = add_role(tenant["institution_id"], "Tõlkija", privileges=[PrivilegeKey.VIEW_USER, PrivilegeKey.EXPORT_USER])
    member_id = add_member(tenant["institution_id"], OTHER_PIC, role_ids=[role_id])

    r = client.get(
        "/api/jwt-claims",
        query_string={"personal_identification_code": OTHER_PIC, "institution_id": tenant["institution_id"]},
        headers=_sso_headers(make_token),
    )
    assert r.status_code == 200
    claims = r.json
    assert claims["institutionUserId"] == member_id
    assert claims["selectedInstitution"] == {"id": tenant["institution_id"], "name": "Tõlkebüroo"}
    assert claims["department"] is None
    assert claims["privileges"] == ["EXPORT_USER", "VIEW_USER"]


def test_unknown_person_and_inactive_membership(client, tenant, add_member, make_token):
    headers = _sso_headers(make_token)
    r = client.get(f"/api/jwt-claims?personal_identification_code={THIRD_PIC}", headers=headers)
    assert r.status_code == 404

    add_member(tenant["institution_id"], OTHER_PIC, deactivation_date=today_in_estonia())
    r = client.get(
        "/api/jwt-claims",
        query_string={"personal_identification_code": OTHER_PIC, "institution_id": tenant["institution_id"]},
        headers=headers,
    )
    assert r.status_code == 403


def test_query_validation(client, make_token):
    headers = _sso_headers(make_token)
    r = client.get("/api/jwt-claims?institution_id=not-a-uuid", headers=headers)
    assert r.status_code == 422
    assert set(r.json["errors"]) == {"personal_identification_code", "institution_id"}
