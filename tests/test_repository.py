"""Tests for RecordRepository CRUD and its interaction with replication."""

import pytest

from gitrecords.document_store import DocumentStore
from gitrecords.errors import DuplicateError, NotFoundError, ValidationError
from gitrecords.repository import RecordRepository
from gitrecords.sync_state import SyncPhase, SyncStateMachine

from conftest import wait_until


@pytest.fixture
def make_repo(tmp_path, fake_sync):
    machines = []

    def _make(backup=False, initial_retry_delay=30.0):
        store = DocumentStore(tmp_path / "content" / "tags.yml")
        machine = SyncStateMachine(
            fake_sync, store.path, store.read_collection, name="tags",
            initial_retry_delay=initial_retry_delay, retry_delay=30.0,
        )
        machines.append(machine)
        return RecordRepository("tags", store, machine, backup=backup)

    yield _make
    for machine in machines:
        machine.shutdown(wait=True, timeout=5)


@pytest.fixture
def repo(make_repo):
    return make_repo()


def _ids(repo):
    return [r.id for r in repo.list()]


class TestCreate:

    def test_create_on_empty_collection(self, repo):
        created = repo.create({"id": "tools", "name": "Tools", "isActive": True})

        assert created.to_dict() == {"id": "tools", "name": "Tools", "isActive": True}
        assert [r.to_dict() for r in repo.list()] == [
            {"id": "tools", "name": "Tools", "isActive": True},
        ]

    def test_duplicate_id_rejected(self, repo, fake_sync):
        repo.create({"id": "tools", "name": "Tools"})
        repo.sync.wait_idle(timeout=5)
        calls = fake_sync.call_count

        with pytest.raises(DuplicateError) as exc:
            repo.create({"id": "tools", "name": "Other"})

        assert exc.value.field == "id"
        assert [r.name for r in repo.list()] == ["Tools"]
        assert fake_sync.call_count == calls

    def test_duplicate_name_rejected_ignoring_case(self, repo):
        repo.create({"id": "tools", "name": "Tools"})

        with pytest.raises(DuplicateError) as exc:
            repo.create({"id": "other", "name": "tools"})

        assert exc.value.field == "name"
        assert _ids(repo) == ["tools"]

    def test_duplicate_is_a_validation_error(self, repo):
        repo.create({"id": "tools", "name": "Tools"})
        with pytest.raises(ValidationError):
            repo.create({"id": "tools", "name": "Again"})

    def test_appends_in_creation_order(self, repo):
        for id in ("alpha", "beta", "gamma"):
            repo.create({"id": id, "name": id.title()})
        assert _ids(repo) == ["alpha", "beta", "gamma"]

    def test_defaults_to_active_and_trims_name(self, repo):
        created = repo.create({"id": "tools", "name": "  Tools  "})
        assert created.is_active is True
        assert created.name == "Tools"

    def test_keeps_kind_specific_fields(self, repo):
        repo.create({"id": "tools", "name": "Tools", "icon": "wrench", "color": None})
        record = repo.find_by_id("tools")
        assert record.extra == {"icon": "wrench"}

    def test_invalid_input_writes_nothing(self, repo, fake_sync):
        with pytest.raises(ValidationError):
            repo.create({"id": "Bad Id", "name": "Tools"})
        with pytest.raises(ValidationError):
            repo.create({"id": "tools", "name": ""})
        with pytest.raises(ValidationError):
            repo.create({"id": "tools", "name": "Tools", "isActive": "yes"})

        assert repo.list() == []
        assert fake_sync.call_count == 0

    def test_triggers_sync_with_descriptive_message(self, repo, fake_sync):
        repo.create({"id": "tools", "name": "Tools"})
        assert wait_until(lambda: fake_sync.call_count == 1)
        assert fake_sync.calls[0]["message"] == "Update tags: create tools"
        assert "tools" in fake_sync.calls[0]["content"]


class TestReplicationFailure:

    def test_push_failure_does_not_fail_the_write(self, repo, fake_sync):
        fake_sync.default_ok = False

        created = repo.create({"id": "x", "name": "X"})

        assert created.id == "x"
        assert _ids(repo) == ["x"]
        repo.sync.wait_idle(timeout=5)
        status = repo.get_sync_status()
        assert status.has_pending_changes is True
        assert status.to_dict()["hasPendingChanges"] is True
        assert status.phase == SyncPhase.PENDING_RETRY

    def test_next_write_after_failure_syncs_everything(self, repo, fake_sync):
        fake_sync.results = [False, True]
        repo.create({"id": "first", "name": "First"})
        repo.sync.wait_idle(timeout=5)

        repo.create({"id": "second", "name": "Second"})
        repo.sync.wait_idle(timeout=5)

        assert repo.get_sync_status().has_pending_changes is False
        assert "first" in fake_sync.calls[-1]["content"]
        assert "second" in fake_sync.calls[-1]["content"]

    def test_local_only_repository_reports_idle(self, tmp_path):
        repo = RecordRepository.local("tags", tmp_path / "tags.yml")
        repo.create({"id": "tools", "name": "Tools"})

        status = repo.get_sync_status()
        assert status.has_pending_changes is False
        assert status.sync_in_progress is False


class TestUpdate:

    def test_updates_name_and_flag(self, repo):
        repo.create({"id": "tools", "name": "Tools"})

        updated = repo.update("tools", {"name": "Dev Tools", "isActive": False})

        assert updated.name == "Dev Tools"
        assert updated.is_active is False
        assert repo.find_by_id("tools").name == "Dev Tools"

    def test_id_is_immutable(self, repo):
        repo.create({"id": "tools", "name": "Tools"})

        updated = repo.update("tools", {"id": "renamed", "name": "Renamed"})

        assert updated.id == "tools"
        assert _ids(repo) == ["tools"]

    def test_keeps_position(self, repo):
        for id in ("alpha", "beta", "gamma"):
            repo.create({"id": id, "name": id.title()})
        repo.update("beta", {"name": "Bee"})
        assert _ids(repo) == ["alpha", "beta", "gamma"]

    def test_same_name_different_case_on_self_is_allowed(self, repo):
        repo.create({"id": "tools", "name": "Tools"})
        assert repo.update("tools", {"name": "TOOLS"}).name == "TOOLS"

    def test_name_taken_by_another_record(self, repo):
        repo.create({"id": "tools", "name": "Tools"})
        repo.create({"id": "design", "name": "Design"})

        with pytest.raises(DuplicateError):
            repo.update("design", {"name": "tools"})
        assert repo.find_by_id("design").name == "Design"

    def test_metadata_set_and_removed(self, repo):
        repo.create({"id": "tools", "name": "Tools", "icon": "wrench", "color": "red"})

        updated = repo.update("tools", {"icon": "hammer", "color": None})

        assert updated.extra == {"icon": "hammer"}

    def test_missing_record(self, repo):
        with pytest.raises(NotFoundError) as exc:
            repo.update("ghost", {"name": "Ghost"})
        assert exc.value.id == "ghost"

    def test_invalid_flag(self, repo):
        repo.create({"id": "tools", "name": "Tools"})
        with pytest.raises(ValidationError):
            repo.update("tools", {"isActive": "no"})


class TestDelete:

    def test_removes_record(self, repo, fake_sync):
        repo.create({"id": "tools", "name": "Tools"})
        repo.create({"id": "design", "name": "Design"})
        repo.sync.wait_idle(timeout=5)

        repo.delete("tools")

        assert _ids(repo) == ["design"]
        assert wait_until(lambda: fake_sync.calls[-1]["message"] == "Update tags: delete tools")

    def test_missing_record(self, repo):
        with pytest.raises(NotFoundError):
            repo.delete("ghost")

    def test_not_found_is_a_lookup_error(self, repo):
        with pytest.raises(LookupError):
            repo.delete("ghost")


class TestReorder:

    def test_reorder_and_missing_ids_are_appended(self, repo):
        repo.create({"id": "a", "name": "A"})
        repo.create({"id": "b", "name": "B"})

        assert [r.id for r in repo.reorder(["b", "a"])] == ["b", "a"]
        assert [r.id for r in repo.reorder(["b"])] == ["b", "a"]
        assert _ids(repo) == ["b", "a"]

    def test_unknown_and_repeated_ids_ignored(self, repo):
        for id in ("a", "b", "c"):
            repo.create({"id": id, "name": id.upper()})

        result = repo.reorder(["c", "nope", "c", "a"])

        assert [r.id for r in result] == ["c", "a", "b"]

    def test_empty_list_keeps_order(self, repo):
        repo.create({"id": "a", "name": "A"})
        repo.create({"id": "b", "name": "B"})
        assert [r.id for r in repo.reorder([])] == ["a", "b"]


class TestQueries:

    @pytest.fixture
    def filled(self, repo):
        repo.create({"id": "tools", "name": "Tools"})
        repo.create({"id": "design", "name": "Design", "isActive": False})
        repo.create({"id": "ai", "name": "AI & ML"})
        return repo

    def test_find_by_name_ignores_case(self, filled):
        assert filled.find_by_name("ai & ml").id == "ai"
        assert filled.find_by_name("nothing") is None

    def test_find_by_id_missing(self, filled):
        assert filled.find_by_id("ghost") is None

    def test_active_only(self, filled):
        assert [r.id for r in filled.list(include_inactive=False)] == ["tools", "ai"]

    def test_duplicate_checks(self, filled):
        assert filled.check_duplicate_id("tools")
        assert not filled.check_duplicate_id("ghost")
        assert filled.check_duplicate_name("TOOLS")
        assert not filled.check_duplicate_name("TOOLS", exclude_id="tools")

    def test_paginate(self, filled):
        page = filled.paginate(page=2, limit=2)

        assert [r.id for r in page.records] == ["ai"]
        assert page.total == 3
        assert page.total_pages == 2

    def test_paginate_past_end_is_empty(self, filled):
        assert filled.paginate(page=5, limit=2).records == []

    def test_paginate_rejects_bad_bounds(self, filled):
        with pytest.raises(ValidationError):
            filled.paginate(page=0)
        with pytest.raises(ValidationError):
            filled.paginate(limit=0)

    def test_returned_records_do_not_alias_storage(self, filled):
        record = filled.find_by_id("tools")
        record.name = "Changed"
        assert filled.find_by_id("tools").name == "Tools"


class TestBackup:

    def test_backup_before_each_rewrite(self, make_repo, tmp_path):
        repo = make_repo(backup=True)
        repo.create({"id": "tools", "name": "Tools"})
        repo.create({"id": "design", "name": "Design"})

        backups = list((tmp_path / "content" / "backups").iterdir())
        assert backups
        assert all(p.name.startswith("tags-backup-") for p in backups)
