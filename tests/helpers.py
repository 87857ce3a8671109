DEFAULT_ADMIN = {"username": "bAyHaCk", "password": "bAyHaCk"}


def login_as(client, username, password):
    client.cookies.clear()
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["user"]
