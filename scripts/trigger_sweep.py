#!/usr/bin/env python3
"""
Trigger an automation sweep through the API.

Usage:
    python scripts/trigger_sweep.py trial-expirations
    python scripts/trigger_sweep.py weekly-reports --api-url https://api.example.com

Environment Variables:
    CRON_SECRET: Secret expected by the /cron endpoints
    API_URL: Base API URL (default: http://localhost:8000)
"""

import argparse
import json
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()

SWEEPS = [
    "recurring-appointments",
    "waitlist-fills",
    "trial-warnings",
    "trial-expirations",
    "weekly-reports",
    "monthly-reports",
]


def trigger_sweep(sweep: str, api_url: str) -> dict:
    """Run one sweep and return its result."""
    cron_secret = os.getenv("CRON_SECRET")
    if not cron_secret:
        print("Error: CRON_SECRET environment variable not set", file=sys.stderr)
        sys.exit(1)

    url = f"{api_url}/api/v1/cron/{sweep}"
    headers = {"X-Cron-Secret": cron_secret}

    try:
        # Report sweeps wait for every tenant's mail to go out
        response = requests.post(url, headers=headers, timeout=600)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Trigger an automation sweep")
    parser.add_argument("sweep", choices=SWEEPS, help="Sweep to run")
    parser.add_argument(
        "--api-url",
        default=os.getenv("API_URL", "http://localhost:8000"),
        help="Base API URL (default: $API_URL or http://localhost:8000)",
    )
    args = parser.parse_args()

    result = trigger_sweep(args.sweep, args.api_url.rstrip("/"))

    status = "completed" if result.get("success") else "completed with errors"
    print(f"Sweep {args.sweep} {status}")
    print(json.dumps(result, indent=2))

    if not result.get("success"):
        sys.exit(2)


if __name__ == "__main__":
    main()
