from __future__ import annotations

import httpx

from rotwatch.run_log import RunLog


def ping_health_check(url: str, run_log: RunLog, *, timeout: float = 30.0) -> bool:
    """GET the health-check URL once. Only call this after a clean run."""
    if not url:
        run_log.info("No health check URL configured")
        return False
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        run_log.warning("Health check request to %s failed: %s", url, exc)
        return False

    run_log.log(f"Health Check Response Code: {response.status_code} Body: {response.text}")
    return response.is_success
