"""
Durable Workflow Steps
======================

Inngest functions for the two backup events:

- ``github-sync/project``    -> back the project's files up to GitHub and
                                persist the resulting commit SHA
- ``restore-commit/project`` -> restore a fragment's commit into a new sandbox

The engine retries steps that raise. Synchronizer and restore failures are
returned as payloads instead, so only persistence errors are retried.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import inngest
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app_config import get_app_settings
from github_client import create_github_client
from repository_sync import SyncRequest, SyncResult, create_synchronizer
from restore_orchestrator import RestoreRequest, create_restore_orchestrator
from utils.sandbox_urls import PROJECT_ID_PATTERN, repository_name_for

logger = logging.getLogger(__name__)

GITHUB_SYNC_EVENT = "github-sync/project"
RESTORE_COMMIT_EVENT = "restore-commit/project"

app_settings = get_app_settings()

inngest_client = inngest.Inngest(
    app_id=app_settings.INNGEST_APP_ID,
    logger=logger,
    is_production=app_settings.INNGEST_IS_PRODUCTION,
    event_key=app_settings.INNGEST_EVENT_KEY,
    signing_key=app_settings.INNGEST_SIGNING_KEY,
)


# =============================================================================
# EVENT SCHEMAS
# =============================================================================


class SyncEvent(BaseModel):
    """Payload of github-sync/project"""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId", min_length=1, pattern=PROJECT_ID_PATTERN)
    files: Dict[str, str] = Field(..., description="Relative path -> UTF-8 content")
    sandbox_url: str = Field(..., alias="sandboxUrl")
    title: str
    fragment_id: Optional[str] = Field(default=None, alias="fragmentId")

    def to_request(self) -> SyncRequest:
        return SyncRequest(
            project_id=self.project_id,
            files=dict(self.files),
            sandbox_url=self.sandbox_url,
            title=self.title,
            fragment_id=self.fragment_id,
        )


class RestoreEvent(BaseModel):
    """Payload of restore-commit/project"""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId", min_length=1, pattern=PROJECT_ID_PATTERN)
    fragment_id: str = Field(..., alias="fragmentId", min_length=1)


def _validate(model: type, data: Mapping[str, Any], event_name: str) -> Any:
    try:
        return model.model_validate(dict(data or {}))
    except ValidationError as e:
        logger.error(f"Invalid {event_name} payload: {e}")
        raise inngest.NonRetriableError(f"Invalid {event_name} payload: {e}") from e


# =============================================================================
# STEP BODIES
# =============================================================================


async def handle_github_sync(
    data: Mapping[str, Any],
    step: Any,
    synchronizer: Any = None,
    store: Any = None,
    settings: Any = None,
) -> Dict[str, Any]:
    """
    Run the github-sync workflow.

    Args:
        data: Raw event data
        step: Inngest step (anything with ``async run(step_id, handler)``)
        synchronizer: RepositorySynchronizer, built from settings when omitted
        store: FragmentStore, built when omitted
        settings: AppSettings, the process-wide settings when omitted

    Returns:
        The synchronizer's result payload, plus ``fragmentsUpdated`` when a
        commit was persisted
    """
    settings = settings if settings is not None else app_settings
    event = _validate(SyncEvent, data, GITHUB_SYNC_EVENT)
    request = event.to_request()

    async def sync_to_github() -> Dict[str, Any]:
        if synchronizer is not None:
            return (await synchronizer.synchronize(request)).to_dict()

        try:
            github = create_github_client(settings)
        except ValueError as e:
            logger.error(f"GitHub sync is not configured: {e}")
            return SyncResult.failure(request, str(e), "configuration_error").to_dict()

        async with github:
            result = await create_synchronizer(settings, github=github).synchronize(request)
        return result.to_dict()

    result = await step.run("sync-to-github", sync_to_github)

    if not result.get("success") or not result.get("commitSha"):
        return result

    async def persist_commit_sha() -> int:
        if store is None:
            from db.integration import FragmentStore

            fragment_store = FragmentStore()
        else:
            fragment_store = store
        return await fragment_store.record_commit_sha(
            repository_name=repository_name_for(request.project_id),
            commit_sha=result["commitSha"],
            fragment_id=request.fragment_id,
        )

    updated = await step.run("persist-commit-sha", persist_commit_sha)
    return {**result, "fragmentsUpdated": updated}


async def handle_restore_commit(
    data: Mapping[str, Any],
    step: Any,
    orchestrator: Any = None,
    settings: Any = None,
) -> Dict[str, Any]:
    """Run the restore-commit workflow"""
    settings = settings if settings is not None else app_settings
    event = _validate(RestoreEvent, data, RESTORE_COMMIT_EVENT)

    async def restore_commit_to_sandbox() -> Dict[str, Any]:
        restorer = orchestrator
        if restorer is None:
            try:
                restorer = create_restore_orchestrator(settings)
            except ValueError as e:
                logger.error(f"Restore is not configured: {e}")
                return {
                    "success": False,
                    "error": str(e),
                    "errorType": "configuration_error",
                    "projectId": event.project_id,
                    "fragmentId": event.fragment_id,
                }
        return await restorer.restore(
            RestoreRequest(project_id=event.project_id, fragment_id=event.fragment_id)
        )

    return await step.run("restore-commit-to-sandbox", restore_commit_to_sandbox)


# =============================================================================
# INNGEST FUNCTIONS
# =============================================================================


@inngest_client.create_function(
    fn_id="github-sync",
    trigger=inngest.TriggerEvent(event=GITHUB_SYNC_EVENT),
)
async def github_sync_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    return await handle_github_sync(ctx.event.data, step)


@inngest_client.create_function(
    fn_id="restore-commit",
    trigger=inngest.TriggerEvent(event=RESTORE_COMMIT_EVENT),
)
async def restore_commit_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    return await handle_restore_commit(ctx.event.data, step)


WORKFLOW_FUNCTIONS = [github_sync_function, restore_commit_function]


async def emit_event(name: str, data: Dict[str, Any]) -> str:
    """Send an event to Inngest and return its id"""
    ids = await inngest_client.send(inngest.Event(name=name, data=data))
    logger.info(f"Emitted {name}: {ids}")
    return ids[0] if ids else ""
