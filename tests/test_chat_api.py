import pytest


@pytest.fixture
def headers(make_user, login):
    make_user("a@example.com")
    return login("a@example.com")


def _create(client, headers, **body):
    r = client.post("/chat/conversations", json=body, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def test_create_makes_only_new_one_active(client, headers, clock):
    first = _create(client, headers, title="First")
    clock.advance(minutes=1)
    second = _create(client, headers, messages=[{"role": "user", "content": "hi"}], metadata={"source": "web"})

    assert second["is_active"] is True
    assert second["title"] == "New conversation"
    assert second["metadata"] == {"source": "web"}

    r = client.get(f"/chat/conversations/{first['id']}", headers=headers)
    assert r.json()["is_active"] is False


def test_list_is_recent_first_without_messages(client, headers, clock):
    _create(client, headers, title="old")
    clock.advance(minutes=5)
    _create(client, headers, title="new", messages=[{"role": "user", "content": "x"}])

    r = client.get("/chat/conversations", headers=headers)
    items = r.json()
    assert [c["title"] for c in items] == ["new", "old"]
    assert "messages" not in items[0]

    r = client.get("/chat/conversations?limit=1&include_messages=true", headers=headers)
    assert len(r.json()) == 1
    assert r.json()[0]["messages"] == [{"role": "user", "content": "x"}]


def test_limit_bounds(client, headers):
    assert client.get("/chat/conversations?limit=0", headers=headers).status_code == 400


def test_active_falls_back_to_most_recent(client, headers, clock):
    assert client.get("/chat/conversations/active", headers=headers).json() is None

    conv = _create(client, headers, title="only")
    client.patch(f"/chat/conversations/{conv['id']}", json={"is_active": False}, headers=headers)

    r = client.get("/chat/conversations/active", headers=headers)
    assert r.json()["id"] == conv["id"]
    assert r.json()["is_active"] is True


def test_patch_activation_switches_others_off(client, headers):
    a = _create(client, headers, title="a")
    b = _create(client, headers, title="b")

    r = client.patch(f"/chat/conversations/{a['id']}", json={"is_active": True, "title": "A"}, headers=headers)
    assert r.json()["title"] == "A"
    assert r.json()["is_active"] is True
    assert client.get(f"/chat/conversations/{b['id']}", headers=headers).json()["is_active"] is False


def test_other_users_conversation_is_not_found(client, headers, make_user, login):
    conv = _create(client, headers)
    make_user("b@example.com")
    other = login("b@example.com")

    assert client.get(f"/chat/conversations/{conv['id']}", headers=other).status_code == 404
    assert client.delete(f"/chat/conversations/{conv['id']}", headers=other).status_code == 404


def test_delete(client, headers):
    conv = _create(client, headers)
    assert client.delete(f"/chat/conversations/{conv['id']}", headers=headers).json() == {"success": True}
    assert client.get(f"/chat/conversations/{conv['id']}", headers=headers).status_code == 404
