# scripts/trigger_restore.py
"""
Smoke client for a running backup API
=====================================

Checks the health endpoint, then asks the server to restore a fragment.
The restore itself runs in the Inngest dev server; follow it there.

Usage:
    python scripts/trigger_restore.py <projectId> <fragmentId>
    python scripts/trigger_restore.py --check     # health check only
"""

import json
import os
import sys

import requests

API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")


def check_health() -> bool:
    print("🔍 Checking API health...")
    try:
        response = requests.get(f"{API_BASE_URL}/api/v1/health", timeout=5)
    except requests.RequestException as e:
        print(f"❌ Failed to connect to API: {e}")
        print("Make sure the API server is running: python api_server.py")
        return False

    if response.status_code != 200:
        print(f"❌ API health check failed: {response.status_code}")
        return False

    print("✅ API Server is healthy!")
    print(json.dumps(response.json(), indent=2))
    return True


def trigger_restore(project_id: str, fragment_id: str) -> bool:
    print(f"\n♻️  Requesting restore of fragment {fragment_id} (project {project_id})...")
    try:
        response = requests.post(
            f"{API_BASE_URL}/restore-fragment",
            json={"projectId": project_id, "fragmentId": fragment_id},
            timeout=15,
        )
    except requests.RequestException as e:
        print(f"❌ Restore request failed: {e}")
        return False

    body = response.json()
    if response.status_code != 200:
        print(f"❌ {response.status_code}: {body.get('error')}")
        return False

    print(f"✅ {body['message']}")
    print(f"   Inngest event: {body['inngestEventId']}")
    return True


def main():
    args = sys.argv[1:]
    if not check_health():
        sys.exit(1)
    if args == ["--check"]:
        return
    if len(args) != 2:
        print(__doc__)
        sys.exit(2)

    if not trigger_restore(*args):
        sys.exit(1)


if __name__ == "__main__":
    main()
