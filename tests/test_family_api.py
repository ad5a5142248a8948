from datetime import timedelta

from conftest import token_from
from familybudget.models.email_token import TokenKind


def test_invite_and_accept(client, make_user, login, mailer, clock):
    owner = make_user("owner@example.com", name="Olive")
    headers = login("owner@example.com")

    r = client.post("/family/invite", json={"email": "Bea@Example.com"}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json() == {"message": "Invitation sent successfully"}

    sent = mailer.last_for("bea@example.com", TokenKind.INVITATION)
    assert "Olive" in sent.subject
    assert "7 days" in sent.html

    clock.advance(days=6)
    r = client.post(
        "/auth/accept-invite",
        json={"token": token_from(sent), "name": "Bea", "password": "secret12"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["user"]["family_id"] == owner.family_id

    r = client.get("/family/members", headers=headers)
    members = {m["email"]: m for m in r.json()}
    assert set(members) == {"owner@example.com", "bea@example.com"}
    assert members["bea@example.com"]["invited_by_user_id"] == owner.id
    assert members["bea@example.com"]["invited_at"] is not None


def test_invite_requires_auth(client):
    r = client.post("/family/invite", json={"email": "x@example.com"})
    assert r.status_code == 401


def test_invite_existing_member(client, make_user, login):
    owner = make_user("owner@example.com")
    make_user("kid@example.com", family_id=owner.family_id)

    r = client.post("/family/invite", json={"email": "kid@example.com"}, headers=login("owner@example.com"))
    assert r.status_code == 400
    assert r.json()["detail"] == "User is already a member of your family"


def test_invite_user_of_other_family(client, make_user, login):
    make_user("owner@example.com")
    make_user("other@example.com")

    r = client.post("/family/invite", json={"email": "other@example.com"}, headers=login("owner@example.com"))
    assert r.status_code == 400
    assert r.json()["detail"] == "User already exists with another family"


def test_duplicate_invite_while_pending(client, make_user, login, mailer):
    make_user("owner@example.com")
    headers = login("owner@example.com")

    assert client.post("/family/invite", json={"email": "b@example.com"}, headers=headers).status_code == 200
    r = client.post("/family/invite", json={"email": "b@example.com"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "An invitation has already been sent to this email"
    assert len(mailer.outbox) == 1


def test_accept_after_expiry(client, make_user, login, mailer, clock):
    make_user("owner@example.com")
    client.post("/family/invite", json={"email": "b@example.com"}, headers=login("owner@example.com"))
    token = token_from(mailer.outbox[-1])

    clock.advance(days=8)
    r = client.post("/auth/accept-invite", json={"token": token, "name": "Bea", "password": "secret12"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invitation expired"

    r = client.post("/auth/accept-invite", json={"token": token, "name": "Bea", "password": "secret12"})
    assert r.json()["detail"] == "Invalid invitation token"


def test_accept_missing_fields(client):
    r = client.post("/auth/accept-invite", json={"token": "abc"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Token, name, and password are required"


def test_resend_replaces_the_link(client, make_user, login, mailer, clock):
    make_user("owner@example.com")
    headers = login("owner@example.com")
    client.post("/family/invite", json={"email": "b@example.com"}, headers=headers)
    old = token_from(mailer.outbox[-1])

    clock.advance(days=3)
    r = client.post("/family/invite/resend", json={"email": "B@example.com"}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json() == {"message": "Invitation resent successfully"}
    assert len(mailer.outbox) == 2
    new = token_from(mailer.outbox[-1])
    assert new != old

    pending = client.get("/family/invitations", headers=headers).json()
    assert len(pending) == 1
    assert pending[0]["email"] == "b@example.com"
    assert pending[0]["expires_at"] == (clock() + timedelta(days=7)).isoformat()

    r = client.post("/auth/accept-invite", json={"token": old, "name": "Bea", "password": "secret12"})
    assert r.json()["detail"] == "Invalid invitation token"
    r = client.post("/auth/accept-invite", json={"token": new, "name": "Bea", "password": "secret12"})
    assert r.status_code == 200


def test_resend_after_expiry(client, make_user, login, mailer, clock):
    make_user("owner@example.com")
    headers = login("owner@example.com")
    client.post("/family/invite", json={"email": "b@example.com"}, headers=headers)

    clock.advance(days=10)
    assert client.get("/family/invitations", headers=headers).json() == []

    r = client.post("/family/invite/resend", json={"email": "b@example.com"}, headers=headers)
    assert r.status_code == 200
    assert len(client.get("/family/invitations", headers=headers).json()) == 1


def test_resend_unknown_invitation(client, make_user, login):
    make_user("owner@example.com")
    r = client.post("/family/invite/resend", json={"email": "nobody@example.com"}, headers=login("owner@example.com"))
    assert r.status_code == 404
    assert r.json()["detail"] == "Invitation not found"


def test_resend_is_scoped_to_family(client, make_user, login):
    make_user("owner@example.com")
    make_user("other@example.com")
    client.post("/family/invite", json={"email": "b@example.com"}, headers=login("owner@example.com"))

    r = client.post("/family/invite/resend", json={"email": "b@example.com"}, headers=login("other@example.com"))
    assert r.status_code == 404
    assert client.get("/family/invitations", headers=login("other@example.com")).json() == []


def test_resend_after_account_exists(client, make_user, login):
    owner = make_user("owner@example.com")
    headers = login("owner@example.com")
    client.post("/family/invite", json={"email": "b@example.com"}, headers=headers)
    make_user("b@example.com", family_id=owner.family_id)

    r = client.post("/family/invite/resend", json={"email": "b@example.com"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "User already exists"
