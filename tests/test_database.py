import json
import os
from datetime import datetime, timedelta, timezone

from database import (
    DEFAULT_SETTINGS,
    MAX_NOTIFICATIONS,
    JsonStore,
    new_id,
    prune_expired,
    sort_public,
)
from schemas import ContentPost, Session, isoformat


def make_post(title, created_at, pinned=False, **kw):
    return ContentPost(
        id=new_id(),
        title=title,
        description=kw.pop("description", "desc"),
        author="tester",
        created_at=created_at,
        updated_at=created_at,
        pinned=pinned,
        **kw,
    )


def test_read_seeds_missing_file(tmp_path):
    store = JsonStore(str(tmp_path / "nested" / "dir"))
    path = store.path("things.json")
    assert store.read(path, [{"a": 1}]) == [{"a": 1}]
    with open(path) as f:
        text = f.read()
    assert json.loads(text) == [{"a": 1}]
    assert "\n  " in text  # pretty printed


def test_read_corrupted_file_falls_back_without_touching_it(tmp_path):
    store = JsonStore(str(tmp_path))
    path = store.path("broken.json")
    with open(path, "w") as f:
        f.write("{not json")
    result = store.read_result(path, [])
    assert result.value == []
    assert result.recovered is True
    with open(path) as f:
        assert f.read() == "{not json"


def test_write_then_read_round_trip(tmp_path):
    store = JsonStore(str(tmp_path))
    path = store.path("data.json")
    value = {"title": "Año nuevo", "items": [1, 2, {"x": None}]}
    store.write(path, value)
    result = store.read_result(path, None)
    assert result.value == value
    assert result.recovered is False
    assert [f for f in os.listdir(tmp_path) if f.startswith(".tmp-")] == []


def test_default_is_not_shared_between_reads(tmp_path):
    store = JsonStore(str(tmp_path))
    default = []
    store.read(store.path("a.json"), default).append("x")
    assert default == []


def test_users_repository_round_trip(repos, auth):
    user = auth.create_user("Alice", "secret", "editor")
    assert repos.users.get_all() == [user]
    assert repos.users.find_by_username("aLiCe") == user
    assert repos.users.find_by_id(user.id) == user
    with open(repos.users.path) as f:
        stored = json.load(f)
    assert set(stored[0]) == {"id", "username", "passwordHash", "role", "createdAt"}


def test_users_delete_by_id(repos, auth):
    user = auth.create_user("bob", "pw")
    assert repos.users.delete_by_id(user.id) is True
    assert repos.users.delete_by_id(user.id) is False


def test_sort_public_pinned_first_then_newest():
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    old = make_post("old", isoformat(base))
    new = make_post("new", isoformat(base + timedelta(days=2)))
    pinned_old = make_post("pinned old", isoformat(base - timedelta(days=5)), pinned=True)
    pinned_new = make_post("pinned new", isoformat(base + timedelta(days=1)), pinned=True)
    ordered = sort_public([old, pinned_old, new, pinned_new])
    assert [p.title for p in ordered] == ["pinned new", "pinned old", "new", "old"]


def test_list_public_filters(repos):
    now = isoformat(datetime.now(timezone.utc))
    repos.content.add(make_post("Guia Linux", now, category="Tutoriales", tags=["bash"]))
    repos.content.add(make_post("Musica", now, category="Audio", tags=["mix"]))
    assert [p.title for p in repos.content.list_public(category="Audio")] == ["Musica"]
    assert [p.title for p in repos.content.list_public(query="BASH")] == ["Guia Linux"]
    assert len(repos.content.list_public(category="all")) == 2
    assert repos.content.categories() == ["Audio", "Tutoriales"]


def test_content_update_keeps_unset_fields(repos):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    post = repos.content.add(make_post("Title", created, tags=["a"]))
    updated = repos.content.update(post.id, {"title": "New title", "tags": None, "pinned": True})
    assert updated.title == "New title"
    assert updated.tags == ["a"]
    assert updated.pinned is True
    assert updated.author == "tester"
    assert updated.created_at == created
    assert updated.updated_at != created
    assert repos.content.update("missing", {"title": "x"}) is None


def test_content_delete_removes_files(repos, uploads):
    kept = uploads.save("a.png", "image/png", b"a")
    gone = uploads.save("b.pdf", "application/pdf", b"b")
    post = repos.content.add(make_post("With files", isoformat(datetime.now(timezone.utc)), files=[kept, gone]))
    os.remove(uploads.resolve(gone.path))  # already missing on disk

    assert repos.content.delete_by_id(post.id).id == post.id
    assert not os.path.exists(uploads.resolve(kept.path))
    assert repos.content.get_all() == []
    assert repos.content.delete_by_id(post.id) is None


def test_notifications_capped_newest_first(repos):
    for i in range(MAX_NOTIFICATIONS + 7):
        repos.notifications.add("new_content", f"n{i}", "msg", content_id=str(i))
    notifications = repos.notifications.get_all()
    assert len(notifications) == MAX_NOTIFICATIONS
    assert notifications[0].title == f"n{MAX_NOTIFICATIONS + 6}"
    assert notifications[-1].title == "n7"
    stamps = [n.created_at for n in notifications]
    assert stamps == sorted(stamps, reverse=True)


def test_settings_seeded_and_shallow_merged(repos):
    assert repos.settings.get() == DEFAULT_SETTINGS
    assert set(DEFAULT_SETTINGS) == {
        "about", "info", "channels", "report", "rdpvps", "stats", "gallery", "downloads",
    }
    merged = repos.settings.save({"info": {"title": "Nuevo"}})
    assert merged["info"] == {"title": "Nuevo"}
    assert merged["about"] == DEFAULT_SETTINGS["about"]
    assert repos.settings.get() == merged


def test_prune_expired_is_pure():
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    def session(token, expires_at):
        return Session(token=token, user_id="u", username="x", role="admin", expires_at=isoformat(expires_at))

    sessions = [session("past", now - timedelta(seconds=1)), session("edge", now), session("live", now + timedelta(hours=1))]
    assert [s.token for s in prune_expired(sessions, now)] == ["live"]
    assert len(sessions) == 3


def test_session_reads_purge_expired_on_disk(repos):
    now = datetime.now(timezone.utc)
    repos.sessions.save_all([
        Session(token="old", user_id="u", username="x", role="editor", expires_at=isoformat(now - timedelta(hours=1))),
        Session(token="new", user_id="u", username="x", role="editor", expires_at=isoformat(now + timedelta(hours=1))),
    ])
    assert [s.token for s in repos.sessions.get_all()] == ["new"]
    with open(repos.sessions.path) as f:
        assert [s["token"] for s in json.load(f)] == ["new"]


def test_timestamps_stored_as_utc_strings(repos, auth):
    user = auth.create_user("judy", "pw")
    with open(repos.users.path) as f:
        stored = json.load(f)[0]["createdAt"]
    assert stored == isoformat(user.created_at)
    assert stored.endswith("Z")


def test_records_with_bad_timestamps_are_skipped(repos):
    now = datetime.now(timezone.utc)
    good = Session(token="ok", user_id="u", username="x", role="admin", expires_at=now + timedelta(hours=1))
    repos.store.write(repos.sessions.path, [
        good.to_json(),
        {"token": "bad", "userId": "u", "username": "x", "role": "admin", "expiresAt": "never"},
        {"token": "naive", "userId": "u", "username": "x", "role": "admin", "expiresAt": "2999-01-01T00:00:00"},
    ])
    assert [s.token for s in repos.sessions.get_all()] == ["ok"]
