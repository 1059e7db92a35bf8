import inngest
import pytest

import workflows
from repository_sync import SyncAction, SyncResult
from workflows import (
    GITHUB_SYNC_EVENT,
    RESTORE_COMMIT_EVENT,
    SyncEvent,
    handle_github_sync,
    handle_restore_commit,
)

SYNC_EVENT = {
    "projectId": "p1",
    "files": {"app/page.tsx": "page\n"},
    "sandboxUrl": "https://3000-sbx123.e2b.app",
    "title": "Landing page",
    "fragmentId": "f1",
}


class FakeSynchronizer:
    def __init__(self, result=None):
        self.requests = []
        self.result = result

    async def synchronize(self, request):
        self.requests.append(request)
        if self.result is not None:
            return self.result
        return SyncResult(
            success=True,
            project_id=request.project_id,
            files_count=len(request.files),
            repo_url="https://github.com/backup_admin/project-p1",
            action=SyncAction.CREATED,
            commit_sha="abc123",
        )


class FakeStore:
    def __init__(self, updated=1):
        self.calls = []
        self.updated = updated

    async def record_commit_sha(self, repository_name, commit_sha, fragment_id=None):
        self.calls.append((repository_name, commit_sha, fragment_id))
        return self.updated


class FakeOrchestrator:
    def __init__(self):
        self.requests = []

    async def restore(self, request):
        self.requests.append(request)
        return {"success": True, "newSandboxUrl": "https://3000-sbxnew.e2b.app", "projectId": request.project_id}


async def test_sync_runs_both_steps_and_binds_fragment(step):
    synchronizer, store = FakeSynchronizer(), FakeStore()

    result = await handle_github_sync(SYNC_EVENT, step, synchronizer=synchronizer, store=store)

    assert step.ids == ["sync-to-github", "persist-commit-sha"]
    assert store.calls == [("project-p1", "abc123", "f1")]
    assert result["success"] is True
    assert result["commitSha"] == "abc123"
    assert result["fragmentsUpdated"] == 1

    request = synchronizer.requests[0]
    assert request.project_id == "p1"
    assert request.fragment_id == "f1"
    assert request.files == {"app/page.tsx": "page\n"}


async def test_sync_without_fragment_id_uses_repository_binding(step):
    store = FakeStore(updated=3)
    event = {k: v for k, v in SYNC_EVENT.items() if k != "fragmentId"}

    result = await handle_github_sync(event, step, synchronizer=FakeSynchronizer(), store=store)

    assert store.calls == [("project-p1", "abc123", None)]
    assert result["fragmentsUpdated"] == 3


async def test_failed_sync_skips_persistence(step):
    failed = SyncResult(success=False, project_id="p1", files_count=1, error="push rejected", error_type="tooling_error")
    store = FakeStore()

    result = await handle_github_sync(SYNC_EVENT, step, synchronizer=FakeSynchronizer(failed), store=store)

    assert step.ids == ["sync-to-github"]
    assert store.calls == []
    assert result == {
        "success": False,
        "error": "push rejected",
        "errorType": "tooling_error",
        "projectId": "p1",
        "filesCount": 1,
    }


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {**SYNC_EVENT, "projectId": ""},
        {k: v for k, v in SYNC_EVENT.items() if k != "files"},
        {**SYNC_EVENT, "files": {"a.bin": 42}},
        {**SYNC_EVENT, "projectId": "x; touch /tmp/pwned #"},
        {**SYNC_EVENT, "projectId": "p1\n"},
    ],
)
async def test_invalid_sync_payload_is_not_retried(step, payload):
    with pytest.raises(inngest.NonRetriableError):
        await handle_github_sync(payload, step, synchronizer=FakeSynchronizer(), store=FakeStore())
    assert step.ids == []


async def test_sync_without_token_returns_configuration_error(step, monkeypatch):
    monkeypatch.setattr(workflows.app_settings, "GITHUB_TOKEN", None)

    result = await handle_github_sync(SYNC_EVENT, step, store=FakeStore())

    assert result["success"] is False
    assert result["errorType"] == "configuration_error"
    assert "GITHUB_TOKEN" in result["error"]


async def test_restore_runs_single_step(step):
    orchestrator = FakeOrchestrator()

    result = await handle_restore_commit({"projectId": "p1", "fragmentId": "f1"}, step, orchestrator=orchestrator)

    assert step.ids == ["restore-commit-to-sandbox"]
    assert result["newSandboxUrl"] == "https://3000-sbxnew.e2b.app"
    assert orchestrator.requests[0].fragment_id == "f1"
    assert orchestrator.requests[0].project_id == "p1"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"projectId": "p1"},
        {"projectId": "p1", "fragmentId": ""},
        {"projectId": "../p1", "fragmentId": "f1"},
    ],
)
async def test_invalid_restore_payload_is_not_retried(step, payload):
    with pytest.raises(inngest.NonRetriableError):
        await handle_restore_commit(payload, step, orchestrator=FakeOrchestrator())


async def test_restore_without_token_returns_configuration_error(step, monkeypatch):
    monkeypatch.setattr(workflows.app_settings, "GITHUB_TOKEN", None)

    result = await handle_restore_commit({"projectId": "p1", "fragmentId": "f1"}, step)

    assert result["success"] is False
    assert result["errorType"] == "configuration_error"
    assert result["fragmentId"] == "f1"


async def test_handlers_use_injected_settings(step, settings, monkeypatch):
    monkeypatch.setattr(workflows.app_settings, "GITHUB_TOKEN", "ghp_processwide")
    unconfigured = settings.model_copy(update={"GITHUB_TOKEN": None})

    synced = await handle_github_sync(SYNC_EVENT, step, store=FakeStore(), settings=unconfigured)
    restored = await handle_restore_commit(
        {"projectId": "p1", "fragmentId": "f1"}, step, settings=unconfigured
    )

    assert synced["errorType"] == "configuration_error"
    assert restored["errorType"] == "configuration_error"
    assert step.ids == ["sync-to-github", "restore-commit-to-sandbox"]


def test_sync_event_accepts_field_names_and_aliases():
    by_alias = SyncEvent.model_validate(SYNC_EVENT)
    by_name = SyncEvent(
        project_id="p1",
        files={"app/page.tsx": "page\n"},
        sandbox_url="https://3000-sbx123.e2b.app",
        title="Landing page",
    )
    assert by_alias.project_id == by_name.project_id == "p1"
    assert by_name.fragment_id is None
    assert by_alias.to_request().repository_name == "project-p1"


def test_functions_are_registered_for_both_events():
    assert GITHUB_SYNC_EVENT == "github-sync/project"
    assert RESTORE_COMMIT_EVENT == "restore-commit/project"
    assert len(workflows.WORKFLOW_FUNCTIONS) == 2


async def test_emit_event_returns_first_id(monkeypatch):
    sent = []

    async def fake_send(event):
        sent.append(event)
        return ["01HZX-event"]

    monkeypatch.setattr(workflows.inngest_client, "send", fake_send)

    event_id = await workflows.emit_event(RESTORE_COMMIT_EVENT, {"projectId": "p1", "fragmentId": "f1"})

    assert event_id == "01HZX-event"
    assert sent[0].name == RESTORE_COMMIT_EVENT
    assert sent[0].data == {"projectId": "p1", "fragmentId": "f1"}
