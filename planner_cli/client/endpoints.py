"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any
from urllib.parse import quote

import httpx

from .base import APIClient
from ..utils.config_manager import config


class PlannerClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def get_queue_stats(self) -> dict[str, dict[str, int]]:
        """Per-queue, per-status counts"""
        return self.api.get("/jobs/stats")

    def list_jobs(
        self,
        queue: str | None = None,
        status: list[str] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if queue:
            params["queue"] = queue
        if status:
            params["status"] = status
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Retry a dead-lettered job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def cancel_pending(self, idempotency_key: str) -> dict[str, Any]:
        """Cancel the pending job holding an idempotency key"""
        return self.api.delete(f"/jobs/pending/{quote(idempotency_key, safe='')}")

    def queue_batch_generation(
        self,
        count: int,
        niche: str,
        platform: str,
        tone: str | None = None,
        language: str | None = None,
    ) -> dict[str, Any]:
        """Queue a batch idea generation for the configured user"""
        data: dict[str, Any] = {"count": count, "niche": niche, "platform": platform}
        if tone:
            data["tone"] = tone
        if language:
            data["language"] = language
        return self.api.post("/jobs/batch-generation", data)
