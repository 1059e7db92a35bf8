"""Small helpers shared by the synchronizer, restore orchestrator and server."""
