"""End-to-end behaviour of the ``GhostHosts`` facade with in-memory adapters."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from ghost_hosts import create_app
from ghost_hosts.application.merge import END_MARKER, START_MARKER
from ghost_hosts.application.ports import BackupKind
from ghost_hosts.domain.errors import (
    ElevationLaunched,
    FetchError,
    MalformedBackup,
    NotFound,
    PermissionDenied,
    UnsupportedPlatform,
    ValidationError,
)
from tests.support import HOSTS_PATH, FakeFetcher, FakePrivilegeGate, MemoryGateway, build_app, wait_until

URL = "https://lists.example.invalid/hosts"
REMOTE_BODY = "0.0.0.0 ads.example\n"


@pytest.fixture()
def app(tmp_path: Path):
    app = build_app(tmp_path, fetcher=FakeFetcher({URL: REMOTE_BODY}))
    yield app
    app.stop_auto_refresh()


def _hosts(app) -> str:
    return app.gateway.files[HOSTS_PATH]


def _enable_auto_refresh(app) -> None:
    app.update_config({"autoRefreshEnabled": True})
    assert app.start_auto_refresh() == {}


def test_add_entry_generates_id_and_persists(app) -> None:
    entry = app.add_entry("Work", content="10.0.0.1 intranet.example", enabled=True)

    assert entry.id and entry.created_at
    assert app.get_entry(entry.id) == entry
    assert [stored.name for stored in app.entries()] == ["Work"]


def test_add_remote_entry_inherits_default_interval(app) -> None:
    app.update_config({"defaultRefreshInterval": 900})
    entry = app.add_entry("Ads", is_remote=True, url=URL)
    assert entry.refresh_interval == 900
    assert app.add_entry("Local").refresh_interval == 0


def test_add_rejects_invalid_entries(app) -> None:
    with pytest.raises(ValidationError):
        app.add_entry(" ")
    with pytest.raises(ValidationError):
        app.add_entry("Remote", is_remote=True, enabled=True, url="")
    assert app.entries() == []


def test_entries_carrying_a_marker_line_are_refused(app) -> None:
    entry = app.add_entry("A", content="1.1.1.1 a.test", enabled=True)

    with pytest.raises(ValidationError):
        app.add_entry("B", content=f"2.2.2.2 b.test\n{END_MARKER}")
    with pytest.raises(ValidationError):
        app.update_entry(entry.id, content=START_MARKER)

    assert [stored.content for stored in app.entries()] == ["1.1.1.1 a.test"]


def test_update_keeps_identity_and_rejects_unknown_fields(app) -> None:
    entry = app.add_entry("Work", content="a")

    updated = app.update_entry(entry.id, name="Office", content="b")

    assert (updated.id, updated.created_at) == (entry.id, entry.created_at)
    assert (updated.name, updated.content) == ("Office", "b")
    with pytest.raises(ValidationError):
        app.update_entry(entry.id, id="other")
    with pytest.raises(NotFound):
        app.update_entry("missing", name="x")


def test_delete_unknown_entry_raises(app) -> None:
    with pytest.raises(NotFound):
        app.delete_entry("missing")


def test_apply_writes_section_and_preserves_foreign_lines(app) -> None:
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    app.add_entry("Disabled", content="9.9.9.9 off.test")

    result = app.apply()

    text = _hosts(app)
    assert text.startswith("127.0.0.1 localhost\n\n" + START_MARKER)
    assert "# Start of group: A\n1.1.1.1 a.test\n# End of group: A" in text
    assert "off.test" not in text
    assert text.endswith(END_MARKER + "\n")
    assert result.path == HOSTS_PATH
    assert result.backup in app.list_backups(BackupKind.DATA)


def test_apply_twice_changes_only_the_timestamp(app) -> None:
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    app.apply()
    first = _hosts(app)
    app.apply()
    second = _hosts(app)

    strip = lambda text: [line for line in text.split("\n") if not line.startswith("# Generated at:")]
    assert strip(first) == strip(second)
    assert second.count(START_MARKER) == 1


def test_disabling_an_entry_removes_its_block(app) -> None:
    entry = app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    app.apply()
    app.toggle_entry(entry.id, False)
    app.apply()

    text = _hosts(app)
    assert "# Start of group: A" not in text
    assert START_MARKER in text and END_MARKER in text


def test_apply_refreshes_enabled_remote_entries(app) -> None:
    remote = app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=0)

    result = app.apply()

    assert result.refreshed_entries == (remote.id,)
    assert REMOTE_BODY.strip() in _hosts(app)
    stored = app.get_entry(remote.id)
    assert stored.content == REMOTE_BODY and stored.last_updated
    assert app.apply().refreshed_entries == ()


def test_apply_keeps_stored_content_when_fetch_fails(tmp_path) -> None:
    app = build_app(tmp_path, fetcher=FakeFetcher({URL: FetchError("timeout")}))
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True, content="0.0.0.0 cached.example")

    result = app.apply()

    assert "0.0.0.0 cached.example" in _hosts(app)
    assert result.refreshed_entries == ()


def test_apply_without_refresh_does_not_fetch(app) -> None:
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True)
    app.apply(refresh=False)
    assert app.fetcher.calls == []


def test_apply_without_backup_when_disabled(app) -> None:
    app.update_config({"backupEnabled": False})
    assert app.apply().backup is None
    assert app.list_backups(BackupKind.DATA) == []


def test_apply_takes_raw_backup_once(app) -> None:
    app.apply()
    app.gateway.files[HOSTS_PATH] = "changed by hand\n"
    app.apply()
    assert app.store.read_raw_external_backup() == "127.0.0.1 localhost\n"


def test_apply_creates_missing_external_file(tmp_path) -> None:
    app = build_app(tmp_path, hosts_text=None)
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    app.apply()
    assert _hosts(app).startswith(START_MARKER)


def test_apply_uses_configured_external_path(app) -> None:
    app.update_config({"externalFilePath": "/virtual/other-hosts"})
    app.apply()
    assert app.gateway.files["/virtual/other-hosts"].startswith(START_MARKER)
    assert _hosts(app) == "127.0.0.1 localhost\n"


def test_apply_without_write_access_requests_elevation(tmp_path) -> None:
    privilege = FakePrivilegeGate(outcome=ElevationLaunched("restarting"))
    app = build_app(tmp_path, gateway=MemoryGateway({HOSTS_PATH: "x\n"}, writable=False), privilege=privilege)

    with pytest.raises(ElevationLaunched):
        app.apply()

    assert privilege.requests == 1
    assert app.gateway.writes == []


def test_failed_elevation_surfaces_permission_denied(tmp_path) -> None:
    cause = PermissionDenied("user dismissed the prompt")
    app = build_app(
        tmp_path,
        gateway=MemoryGateway({HOSTS_PATH: "x\n"}, writable=False),
        privilege=FakePrivilegeGate(outcome=cause),
    )

    with pytest.raises(PermissionDenied, match="No write access") as excinfo:
        app.apply()

    assert excinfo.value.__cause__ is cause
    assert app.gateway.writes == []


def test_unsupported_platform_propagates(tmp_path) -> None:
    app = build_app(
        tmp_path,
        gateway=MemoryGateway({HOSTS_PATH: "x\n"}, writable=False),
        privilege=FakePrivilegeGate(outcome=UnsupportedPlatform("plan9")),
    )
    with pytest.raises(UnsupportedPlatform):
        app.apply()


def test_preview_does_not_write(app) -> None:
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)

    preview = app.preview()

    assert "# Start of group: A" in preview
    assert app.gateway.writes == []


def test_status_reports_applied_groups(app) -> None:
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    assert app.status()["managed_section"] is False
    app.apply()

    status = app.status()

    assert status["managed_section"] is True
    assert status["applied_groups"] == ["A"]
    assert status["writable"] is True
    assert status["running_tasks"] == []


def test_refresh_remote_entries_collects_failures(tmp_path) -> None:
    broken = "https://broken.example.invalid/hosts"
    app = build_app(tmp_path, fetcher=FakeFetcher({URL: REMOTE_BODY, broken: FetchError("404")}))
    good = app.add_entry("Good", is_remote=True, url=URL)
    bad = app.add_entry("Bad", is_remote=True, url=broken)
    app.add_entry("Local", content="x")

    report = app.refresh_remote_entries()

    assert report.changed == [good.id]
    assert list(report.failed) == [bad.id]
    assert app.refresh_remote_entries().unchanged == [good.id]


def test_start_auto_refresh_respects_config(app) -> None:
    with pytest.raises(ValidationError):
        app.start_auto_refresh()
    assert app.auto_refresh_active is False


def test_toggle_off_then_on_restarts_exactly_one_task(app) -> None:
    _enable_auto_refresh(app)
    remote = app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
    other = app.add_entry("Other", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
    assert app.scheduler.running_ids() == sorted([remote.id, other.id])

    app.toggle_entry(remote.id, False)
    assert app.scheduler.running_ids() == [other.id]

    app.toggle_entry(remote.id, True)
    assert app.scheduler.running_ids() == sorted([remote.id, other.id])
    thread_name = f"ghost-refresh-{remote.id}"
    assert wait_until(lambda: [thread.name for thread in threading.enumerate()].count(thread_name) == 1)


def test_interval_changes_restart_or_stop_the_task(app) -> None:
    _enable_auto_refresh(app)
    remote = app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)

    app.update_entry(remote.id, refresh_interval=1)
    assert wait_until(lambda: app.get_entry(remote.id).content == REMOTE_BODY)

    app.update_entry(remote.id, refresh_interval=0)
    assert app.scheduler.running_ids() == []


def test_delete_stops_the_task_first(app) -> None:
    _enable_auto_refresh(app)
    remote = app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)

    app.delete_entry(remote.id)

    assert app.scheduler.running_ids() == []
    assert app.entries() == []


def test_disabling_auto_refresh_in_config_stops_tasks(app) -> None:
    _enable_auto_refresh(app)
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)

    app.update_config({"autoRefreshEnabled": False})

    assert app.scheduler.running_ids() == []
    assert app.auto_refresh_active is False


def test_entry_changes_do_not_start_tasks_while_auto_refresh_is_off(app) -> None:
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
    assert app.scheduler.running_ids() == []


def test_resync_picks_up_changes_made_by_another_process(tmp_path) -> None:
    app = build_app(tmp_path, fetcher=FakeFetcher({URL: REMOTE_BODY}))
    other = build_app(tmp_path)
    _enable_auto_refresh(app)
    try:
        remote = other.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
        assert app.scheduler.running_ids() == []

        app.resync_auto_refresh()
        assert app.scheduler.running_ids() == [remote.id]

        other.delete_entry(remote.id)
        app.resync_auto_refresh()
        assert app.scheduler.running_ids() == []

        other.update_config({"autoRefreshEnabled": False})
        app.resync_auto_refresh()
        assert app.auto_refresh_active is False
    finally:
        app.stop_auto_refresh()


def test_resync_is_a_no_op_while_auto_refresh_is_off(app) -> None:
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
    app.resync_auto_refresh()
    assert app.scheduler.running_ids() == []


def test_update_config_rejects_bad_values(app) -> None:
    with pytest.raises(ValidationError):
        app.update_config({"maxBackups": "ten"})
    with pytest.raises(ValidationError):
        app.update_config({"maxBackups": -1})
    with pytest.raises(ValidationError):
        app.update_config({"unknownKey": 1})


def test_restore_backup_with_rotation_scenario(app) -> None:
    app.update_config({"maxBackups": 3})
    app.add_entry("A", content="a")
    names = [app.create_backup(BackupKind.DATA) for _ in range(5)]
    assert app.list_backups() == list(reversed(names))[:3]

    app.add_entry("B", content="b")
    app.restore_backup(names[-1])

    assert [entry.name for entry in app.entries()] == ["A"]


def test_restore_malformed_backup_keeps_entries(app) -> None:
    app.add_entry("A", content="a")
    bad = app.store.backup_dir / "2099-01-01_00-00-00-000000.json"
    bad.write_text(json.dumps({"entries": [{"id": 1, "name": "x"}]}), encoding="utf-8")

    with pytest.raises(MalformedBackup):
        app.restore_backup(bad.name)

    assert [entry.name for entry in app.entries()] == ["A"]


def test_restore_resyncs_running_tasks(app) -> None:
    _enable_auto_refresh(app)
    snapshot_source = app.add_entry("Local", content="x")
    snapshot = app.create_backup()
    app.add_entry("Ads", is_remote=True, url=URL, enabled=True, refresh_interval=3600)
    assert len(app.scheduler.running_ids()) == 1

    app.restore_backup(snapshot)

    assert app.scheduler.running_ids() == []
    assert [entry.id for entry in app.entries()] == [snapshot_source.id]


def test_raw_hosts_backup_and_restore(app) -> None:
    assert app.ensure_initial_backup() is not None
    assert app.ensure_initial_backup() is None
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)
    app.apply()

    assert app.restore_raw_hosts() == HOSTS_PATH
    assert _hosts(app) == "127.0.0.1 localhost\n"

    app.gateway.files[HOSTS_PATH] = "edited\n"
    app.backup_raw_hosts()
    assert app.store.read_raw_external_backup() == "edited\n"


def test_shutdown_snapshots_config(app) -> None:
    app.shutdown()
    assert app.list_backups(BackupKind.CONFIG) == []
    app.update_config({"maxBackups": 4})
    app.shutdown()
    assert len(app.list_backups(BackupKind.CONFIG)) == 1


def test_create_app_honours_environment(tmp_path: Path) -> None:
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    app = create_app(
        env={"GHOST_HOSTS_DATA_DIR": str(tmp_path / "data"), "GHOST_HOSTS_FILE": str(hosts)},
        platform="linux",
        fetcher=FakeFetcher(),
    )
    app.add_entry("A", content="1.1.1.1 a.test", enabled=True)

    app.apply()

    assert (tmp_path / "data" / "data.json").is_file()
    assert "# Start of group: A" in hosts.read_text(encoding="utf-8")
    assert app.external_path() == str(hosts)
