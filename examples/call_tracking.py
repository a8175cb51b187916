"""
Example Python client for the tracking endpoints.

Starts tracking a delivery, prints the live position and stats, then shows
the recorded history once tracking is stopped.

    JWT_TOKEN=... python examples/call_tracking.py <delivery_id> <vehicle_id> [interval]
"""
import json
import os
import sys
import time
from typing import Any, Dict

import httpx

API_URL = os.environ.get("API_URL", "http://localhost:8000")
JWT_TOKEN = os.environ.get("JWT_TOKEN", "")


class TrackingAPIError(Exception):
    """Custom exception for tracking API errors."""
    pass


def _call(client: httpx.Client, method: str, path: str, **kwargs) -> Dict[str, Any]:
    try:
        response = client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as http_err:
        try:
            error_data = http_err.response.json()
        except ValueError:
            error_data = {}
        message = error_data.get("message") or error_data.get("detail") or http_err.response.text
        raise TrackingAPIError(f"{method} {path} failed: {message}") from http_err
    except httpx.HTTPError as req_err:
        raise TrackingAPIError(f"Request error calling {path}: {req_err}") from req_err


def main():
    if not JWT_TOKEN:
        print("Error: JWT_TOKEN environment variable is required")
        sys.exit(1)
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)

    delivery_id, vehicle_id = sys.argv[1], sys.argv[2]
    interval = float(sys.argv[3]) if len(sys.argv) > 3 else 10

    headers = {"Authorization": f"Bearer {JWT_TOKEN}"}
    with httpx.Client(base_url=API_URL, headers=headers, timeout=30.0) as client:
        try:
            started = _call(
                client, "POST", f"/tracking/start/{delivery_id}",
                json={"vehicle_id": vehicle_id, "interval_seconds": interval},
            )
            print("Started:", json.dumps(started["tracking_info"], indent=2))

            current = _call(client, "GET", f"/tracking/current/{vehicle_id}")
            print("Current position:", json.dumps(current["data"]["pos"]))

            time.sleep(interval * 2 + 1)
            stats = _call(client, "GET", "/tracking/stats")
            print(f"Active trackings: {stats['data']['active_trackings']}")

            stopped = _call(client, "POST", f"/tracking/stop/{delivery_id}")
            print(f"Stopped after {stopped.get('duration')}s")

            history = _call(client, "GET", f"/tracking/history/{delivery_id}")
            print(f"History ({history['count']} points):")
            for row in history["data"][:5]:
                print(f"  {json.dumps(row)}")
        except TrackingAPIError as e:
            print(f"Tracking API Error: {str(e)}")
            sys.exit(1)


if __name__ == "__main__":
    main()
