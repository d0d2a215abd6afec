import os
import sqlite3
from datetime import UTC, datetime

import pytest

from beans.errors import AmbiguousIDError, BeanFileError, NotFoundError, SearchIndexError, ValidationError
from beans.models import Link
from beans.store import BeanStore
from conftest import write_bean


def test_create_assigns_identity(store):
    bean = store.create("Fix login redirect", type="bug", tags=["auth"])
    assert len(bean.id) == 4
    assert bean.slug == "fix-login-redirect"
    assert bean.path == f"{bean.id}-fix-login-redirect.md"
    assert bean.status == "open"
    assert bean.created_at is not None
    assert bean.updated_at == bean.created_at
    assert store.full_path(bean).is_file()


def test_create_uses_config_defaults(store, cfg):
    bean = store.create("Something")
    assert bean.status == cfg.default_status
    assert bean.type == cfg.default_type
    assert store.create("Untyped", type="").type == ""


def test_find_by_id_after_save_returns_what_was_written(store):
    bean = store.create("First")
    bean.status = "in-progress"
    bean.title = "First, renamed"
    bean.add_tag("backend")
    bean.add_link("blocks", "zzzz")
    store.save(bean)

    found = store.find_by_id(bean.id)
    assert found.status == "in-progress"
    assert found.title == "First, renamed"
    assert found.tags == ["backend"]
    assert found.links == [Link("blocks", "zzzz")]


def test_save_keeps_filename(store):
    bean = store.create("Original title")
    path = bean.path
    bean.title = "Completely different"
    store.save(bean)
    assert bean.path == path
    assert store.full_path(bean).is_file()
    assert len(list(store.root.iterdir())) == 1


def test_save_persists_across_reload(store, beans_dir, cfg):
    bean = store.create("Persist me", body="Some *markdown*.\n", links=[Link("parent", "ep01")])

    fresh = BeanStore(beans_dir, cfg)
    fresh.load()
    loaded = fresh.find_by_id(bean.id)
    assert loaded == store.find_by_id(bean.id)
    assert loaded.body == "Some *markdown*.\n"
    fresh.close()


def test_reload_is_idempotent(store, beans_dir):
    store.create("One", tags=["a"])
    store.create("Two", links=[Link("blocks", "nope")])
    write_bean(beans_dir, "x1-manual.md", "---\ntitle: Manual\nstatus: open\n---\nhand written\n")

    store.reload()
    first = sorted(store.find_all(), key=lambda b: b.id)
    store.reload()
    second = sorted(store.find_all(), key=lambda b: b.id)
    assert first == second
    assert len(first) == 3


def test_reload_picks_up_external_changes(store, beans_dir):
    bean = store.create("Edit me")
    write_bean(beans_dir, "new1-added.md", "---\ntitle: Added outside\nstatus: open\n---\n")
    os.remove(store.full_path(bean))
    store.reload()
    assert [b.id for b in store.find_all()] == ["new1"]
    assert not store.exists(bean.id)


def test_reload_skips_bad_and_foreign_files(store, beans_dir):
    write_bean(beans_dir, "good-one.md", "---\ntitle: Good\nstatus: open\n---\n")
    write_bean(beans_dir, "bad1-broken.md", "---\ntitle: [oops\n---\n")
    write_bean(beans_dir, "notes.txt", "not a bean")
    (beans_dir / "sub").mkdir()
    write_bean(beans_dir / "sub", "deep-nested.md", "---\ntitle: Nested\nstatus: open\n---\n")
    (beans_dir / "bad2-binary.md").write_bytes(b"\xff\xfe\x00garbage")

    store.reload()
    assert [b.id for b in store.find_all()] == ["good"]


def test_reload_skips_duplicate_ids(store, beans_dir):
    write_bean(beans_dir, "ab12-first.md", "---\ntitle: First\nstatus: open\n---\n")
    write_bean(beans_dir, "ab12-second.md", "---\ntitle: Second\nstatus: open\n---\n")
    store.reload()
    assert len(store) == 1
    assert store.find_by_id("ab12").title == "First"


def test_reload_failure_keeps_snapshot(store, beans_dir):
    store.create("Survivor")
    beans_dir.rename(beans_dir.with_name("moved"))
    with pytest.raises(BeanFileError):
        store.reload()
    assert [b.title for b in store.find_all()] == ["Survivor"]


def test_timestamp_fallbacks(store, beans_dir):
    write_bean(
        beans_dir,
        "up01-updated-only.md",
        "---\ntitle: U\nstatus: open\nupdated_at: '2024-03-01T12:00:00Z'\n---\n",
    )
    bare = write_bean(beans_dir, "mt01-no-times.md", "---\ntitle: M\nstatus: open\n---\n")
    stamp = datetime(2023, 5, 6, 7, 8, 9, tzinfo=UTC).timestamp()
    os.utime(bare, (stamp, stamp))
    store.reload()

    up = store.find_by_id("up01")
    assert up.created_at == up.updated_at == datetime(2024, 3, 1, 12, tzinfo=UTC)
    mt = store.find_by_id("mt01")
    assert mt.created_at == mt.updated_at == datetime(2023, 5, 6, 7, 8, 9, tzinfo=UTC)


def test_find_by_id_prefix(store, beans_dir):
    for name in ("abc1-x.md", "abc2-y.md", "zz99.md"):
        write_bean(beans_dir, name, "---\ntitle: t\nstatus: open\n---\n")
    store.reload()

    assert store.find_by_id("abc1").id == "abc1"
    assert store.find_by_id("z").id == "zz99"
    with pytest.raises(AmbiguousIDError) as exc_info:
        store.find_by_id("abc")
    assert exc_info.value.candidates == ["abc1", "abc2"]
    with pytest.raises(NotFoundError):
        store.find_by_id("nope")
    with pytest.raises(NotFoundError):
        store.find_by_id("")


def test_find_all_returns_copies(store):
    bean = store.create("Immutable snapshot")
    for b in store.find_all():
        b.title = "mutated"
        b.tags.append("x")
    again = store.find_by_id(bean.id)
    assert again.title == "Immutable snapshot"
    assert again.tags == []


def test_validation(store):
    bean = store.create("Valid")
    bean.status = "bogus"
    with pytest.raises(ValidationError, match="invalid status"):
        store.save(bean)
    bean.status = "open"
    bean.type = "bogus"
    with pytest.raises(ValidationError, match="invalid type"):
        store.save(bean)
    assert store.find_by_id(bean.id).type == "task"


def test_failed_write_leaves_memory_untouched(store, monkeypatch):
    bean = store.create("Before")

    def boom(_bean):
        raise BeanFileError("disk full")

    monkeypatch.setattr(store, "_write", boom)
    bean.title = "Renamed"
    with pytest.raises(BeanFileError):
        store.save(bean)
    assert store.find_by_id(bean.id).title == "Before"
    assert store.search("renamed") == []

    with pytest.raises(BeanFileError):
        store.create("Never stored")
    assert len(store) == 1


def test_save_refreshes_updated_at(store):
    bean = store.create("Clock")
    created = bean.created_at
    bean.updated_at = datetime(2000, 1, 1, tzinfo=UTC)
    store.save(bean)
    assert bean.created_at == created
    assert bean.updated_at >= created


def test_delete(store):
    keep = store.create("Keep me")
    gone = store.create("Delete me")
    path = store.full_path(gone)

    deleted = store.delete(gone.id)
    assert deleted.id == gone.id
    assert not path.exists()
    assert not store.exists(gone.id)
    assert store.search("delete") == []
    assert [b.id for b in store.find_all()] == [keep.id]
    with pytest.raises(NotFoundError):
        store.delete(gone.id)


def test_delete_tolerates_missing_file(store):
    bean = store.create("Already gone")
    store.full_path(bean).unlink()
    store.delete(bean.id)
    assert len(store) == 0


def test_search_tracks_writes(store):
    bean = store.create("Dark mode", body="Add a theme toggle.")
    assert [b.id for b in store.search("toggle")] == [bean.id]
    bean.body = "Respect the OS setting."
    store.save(bean)
    assert store.search("toggle") == []
    assert [b.id for b in store.search("setting")] == [bean.id]

    store.reload()
    assert [b.id for b in store.search("dark")] == [bean.id]


def test_incoming_links_and_remove_links_to(store):
    target = store.create("Target")
    a = store.create("A", links=[Link("blocks", target.id), Link("related", target.id)])
    b = store.create("B", links=[Link("parent", target.id)])
    store.create("C")

    incoming = store.find_incoming_links(target.id)
    assert sorted((i.source.id, i.link_type) for i in incoming) == sorted(
        [(a.id, "blocks"), (a.id, "related"), (b.id, "parent")],
    )

    assert store.remove_links_to(target.id) == 3
    assert store.find_incoming_links(target.id) == []
    assert store.find_by_id(a.id).links == []


def test_init_creates_root(tmp_path, cfg):
    s = BeanStore(tmp_path / "x" / "y", cfg)
    s.init()
    assert s.root.is_dir()
    s.load()
    assert len(s) == 0
    s.close()


def test_priority_defaults_and_validation(store, beans_dir):
    assert store.create("Plain").priority == "normal"
    urgent = store.create("Urgent", priority="critical")
    assert store.find_by_id(urgent.id).priority == "critical"

    write_bean(beans_dir, "np01-no-priority.md", "---\ntitle: Old file\nstatus: open\n---\n")
    store.reload()
    assert store.find_by_id("np01").priority == "normal"
    assert store.find_by_id(urgent.id).priority == "critical"

    with pytest.raises(ValidationError, match="invalid priority"):
        store.create("Bad", priority="whenever")


def test_failed_index_rebuild_keeps_snapshot_and_index(store, beans_dir, monkeypatch):
    kept = store.create("Indexed widget")
    write_bean(beans_dir, "ix01-newcomer.md", "---\ntitle: Newcomer gadget\nstatus: open\n---\n")

    def broken(_docs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store._index, "index_batch", broken)
    with pytest.raises(SearchIndexError):
        store.reload()
    # neither side moved: the snapshot and the search index still agree
    assert [b.id for b in store.find_all()] == [kept.id]
    assert [b.id for b in store.search("widget")] == [kept.id]
    assert store.search("gadget") == []

    monkeypatch.undo()
    store.reload()
    assert [b.id for b in store.search("gadget")] == ["ix01"]
