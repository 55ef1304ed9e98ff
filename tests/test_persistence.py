from __future__ import annotations

import json
import logging

from devcontext.models import AppSnapshot, Project
from devcontext.persistence import (
    FsSnapshotRepo,
    Mutation,
    PersistenceWorker,
    PgSnapshotRepo,
    SnapshotRepo,
    export_snapshot,
    import_snapshot,
    make_repo,
    seed_snapshot,
)


def test_missing_file_writes_and_returns_seed(tmp_path):
    repo = FsSnapshotRepo(tmp_path)

    snapshot = repo.load()

    assert repo.path.name == "devcontext_pro_db_v6.json"
    assert repo.path.exists()
    assert snapshot.project("p-demo").name == "DevContext Architecture"
    assert [f.full_path for f in snapshot.project("p-demo").files] == ["/README.md", "/docs/features.md"]
    task = snapshot.task("t-1")
    assert task.title == "Implement OpenRouter API"
    assert task.status == "DONE"


def test_save_then_load_round_trips_with_settings_defaults(tmp_path):
    repo = FsSnapshotRepo(tmp_path)
    snapshot = AppSnapshot(projects=(Project(id="p1", name="Mine"),))

    repo.save(snapshot)
    loaded = FsSnapshotRepo(tmp_path).load()

    assert loaded == snapshot
    assert loaded.settings.user_name == "Developer"


def test_partial_document_is_merged_onto_defaults(tmp_path):
    path = tmp_path / "devcontext_pro_db_v6.json"
    path.write_text(
        json.dumps(
            {
                "projects": [{"id": "p1", "name": "Old", "files": [{"id": "f", "name": "a.md"}]}],
                "settings": {"openRouterKey": "sk"},
            }
        ),
        encoding="utf-8",
    )

    loaded = FsSnapshotRepo(tmp_path).load()

    assert loaded.tasks == ()
    assert loaded.project("p1").files[0].path == "/"
    assert [c.id for c in loaded.project("p1").columns] == ["TODO", "IN_PROGRESS", "DONE"]
    assert loaded.settings.openrouter_key == "sk"
    assert loaded.settings.language == "en"


def test_corrupt_file_is_quarantined_and_seed_used(tmp_path, caplog):
    path = tmp_path / "devcontext_pro_db_v6.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        snapshot = FsSnapshotRepo(tmp_path).load()

    assert snapshot.project("p-demo") is not None
    assert not path.exists()
    quarantined = list(tmp_path.glob("devcontext_pro_db_v6.json.corrupt-*"))
    assert len(quarantined) == 1
    assert "Quarantined corrupt snapshot" in caplog.text


def test_non_object_root_is_quarantined(tmp_path):
    (tmp_path / "devcontext_pro_db_v6.json").write_text("[1, 2]", encoding="utf-8")

    snapshot = FsSnapshotRepo(tmp_path).load()

    assert snapshot.project("p-demo") is not None
    assert list(tmp_path.glob("*.corrupt-*"))


def test_import_requires_projects_and_tasks_lists():
    assert import_snapshot("not json") is None
    assert import_snapshot(json.dumps({"projects": []})) is None
    assert import_snapshot(json.dumps({"projects": {}, "tasks": []})) is None

    imported = import_snapshot(export_snapshot(seed_snapshot(now=5)))

    assert imported == seed_snapshot(now=5)


class _FailingRepo(SnapshotRepo):
    def __init__(self) -> None:
        self.calls = 0

    def load(self) -> AppSnapshot:
        return AppSnapshot()

    def save(self, snapshot: AppSnapshot) -> None:
        self.calls += 1
        raise OSError("disk full")


def test_worker_logs_failures_and_keeps_running(caplog):
    repo = _FailingRepo()
    worker = PersistenceWorker(repo)
    try:
        with caplog.at_level(logging.ERROR):
            worker.submit(Mutation("task", "upsert", "t"), AppSnapshot())
            worker.submit(Mutation("task", "delete", "t"), AppSnapshot())
            worker.flush(timeout=2)
    finally:
        worker.close()

    assert repo.calls == 2
    assert "Failed to persist task upsert" in caplog.text


def test_make_repo_prefers_local_file_without_database(tmp_path, monkeypatch):
    monkeypatch.setattr("devcontext.config.PG_DSN", None)

    assert isinstance(make_repo(storage="auto", base_dir=tmp_path), FsSnapshotRepo)
    assert isinstance(make_repo(storage="fs", base_dir=tmp_path), FsSnapshotRepo)


def test_make_repo_pg_without_url_falls_back_to_local(tmp_path, monkeypatch):
    monkeypatch.setattr("devcontext.config.PG_DSN", None)

    repo = make_repo(storage="pg", base_dir=tmp_path)

    assert isinstance(repo, PgSnapshotRepo)
    assert not repo.connected
    assert repo.load().project("p-demo") is not None


def test_badly_shaped_document_still_loads(tmp_path):
    path = tmp_path / "devcontext_pro_db_v6.json"
    path.write_text(json.dumps({"tasks": [{"id": "t", "subtasks": [None], "tags": 5}]}), encoding="utf-8")

    snapshot = FsSnapshotRepo(tmp_path).load()

    assert snapshot.task("t").subtasks == ()
    assert snapshot.task("t").tags == ()
    assert path.exists()


def test_document_that_fails_to_convert_is_quarantined(tmp_path, monkeypatch, caplog):
    from devcontext import persistence

    def _explode(raw):
        raise TypeError("bad shape")

    path = tmp_path / "devcontext_pro_db_v6.json"
    path.write_text(json.dumps({"projects": [], "tasks": []}), encoding="utf-8")
    monkeypatch.setattr(persistence, "snapshot_from_document", _explode)

    with caplog.at_level(logging.WARNING):
        snapshot = FsSnapshotRepo(tmp_path).load()

    assert snapshot.project("p-demo") is not None
    assert not path.exists()
    assert list(tmp_path.glob("*.corrupt-*"))
    assert "bad shape" in caplog.text


def test_import_rejects_documents_that_fail_to_convert(monkeypatch, caplog):
    from devcontext import persistence

    def _explode(raw):
        raise AttributeError("'NoneType' object has no attribute 'get'")

    lenient = import_snapshot(json.dumps({"projects": [], "tasks": [{"id": "t", "tags": 5}]}))
    assert lenient is not None and lenient.task("t").tags == ()

    monkeypatch.setattr(persistence, "snapshot_from_document", _explode)
    with caplog.at_level(logging.WARNING):
        assert import_snapshot(json.dumps({"projects": [], "tasks": []})) is None
    assert "Rejected snapshot import" in caplog.text
