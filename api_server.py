# api_server.py
"""
Backup & Restore API Server
===========================

HTTP entry points for the GitHub backup workflows. Requests are only
acknowledged here; the actual sync / restore runs out-of-band in the
Inngest functions served under /api/inngest.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

import dotenv
import inngest.fast_api
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from db.session import close_db
from utils.sandbox_urls import PROJECT_ID_PATTERN, is_valid_project_id
from workflows import (
    GITHUB_SYNC_EVENT,
    RESTORE_COMMIT_EVENT,
    WORKFLOW_FUNCTIONS,
    emit_event,
    inngest_client,
)

dotenv.load_dotenv()

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, Dict[str, Any]], Awaitable[str]]

# =============================================================================
# FASTAPI APP CONFIGURATION
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_db()


app = FastAPI(
    title="Vibe Backup API",
    description="Triggers GitHub backups of generated projects and restores historical snapshots",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

inngest.fast_api.serve(app, inngest_client, WORKFLOW_FUNCTIONS)


def get_event_emitter() -> EventEmitter:
    """Dependency returning the coroutine used to emit workflow events"""
    return emit_event


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


async def read_json_object(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object or raise ValueError"""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


def server_error(error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": str(error) or "Internal server error", "success": False},
    )


# =============================================================================
# TRIGGER ENDPOINTS
# =============================================================================


@app.post("/restore-fragment")
async def restore_fragment(
    request: Request,
    emit: EventEmitter = Depends(get_event_emitter),
):
    """
    Start restoring a fragment's backed-up commit into a new sandbox.

    Body: {"projectId": str, "fragmentId": str}
    """
    try:
        body = await read_json_object(request)
    except ValueError as e:
        return bad_request(str(e))

    project_id = body.get("projectId")
    fragment_id = body.get("fragmentId")
    if not project_id or not fragment_id:
        return bad_request("projectId and fragmentId are required")
    if not isinstance(project_id, str) or not isinstance(fragment_id, str):
        return bad_request("projectId and fragmentId must be strings")
    if not is_valid_project_id(project_id):
        return bad_request(f"projectId must match {PROJECT_ID_PATTERN}")

    try:
        event_id = await emit(
            RESTORE_COMMIT_EVENT,
            {"projectId": project_id, "fragmentId": fragment_id},
        )
    except Exception as e:
        logger.error(f"Restore fragment API error: {e}")
        return server_error(e)

    logger.info(f"Restore requested for fragment {fragment_id} (event {event_id})")
    return {
        "success": True,
        "inngestEventId": event_id,
        "message": "Restore started. Please wait...",
    }


@app.post("/sync-project")
async def sync_project(
    request: Request,
    emit: EventEmitter = Depends(get_event_emitter),
):
    """
    Queue a GitHub backup of a project's files.

    Body: {"projectId": str, "files": {path: content}, "sandboxUrl": str,
    "title": str, "fragmentId": str (optional)}
    """
    try:
        body = await read_json_object(request)
    except ValueError as e:
        return bad_request(str(e))

    missing = [key for key in ("projectId", "sandboxUrl", "title") if not body.get(key)]
    if missing:
        return bad_request(f"{', '.join(missing)} required")
    if not is_valid_project_id(body["projectId"]):
        return bad_request(f"projectId must match {PROJECT_ID_PATTERN}")
    files = body.get("files")
    if not isinstance(files, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in files.items()
    ):
        return bad_request("files must be an object mapping paths to text content")

    data = {
        "projectId": body["projectId"],
        "files": files,
        "sandboxUrl": body["sandboxUrl"],
        "title": body["title"],
    }
    if body.get("fragmentId"):
        data["fragmentId"] = body["fragmentId"]

    try:
        event_id = await emit(GITHUB_SYNC_EVENT, data)
    except Exception as e:
        logger.error(f"Sync project API error: {e}")
        return server_error(e)

    return {
        "success": True,
        "inngestEventId": event_id,
        "message": "Backup queued.",
    }


# =============================================================================
# HEALTH AND STATUS ENDPOINTS
# =============================================================================


@app.get("/api/v1/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "workflows": [GITHUB_SYNC_EVENT, RESTORE_COMMIT_EVENT],
        "version": "1.0.0",
    }


# =============================================================================
# SERVER STARTUP
# =============================================================================

if __name__ == "__main__":
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    logger.info(f"Starting Vibe Backup API server on {HOST}:{PORT}")

    uvicorn.run(
        "api_server:app",
        host=HOST,
        port=PORT,
        reload=False,
        log_level="info",
        access_log=True
    )
