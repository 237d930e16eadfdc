"""
Scheduled Risk Scan — runs a bulk risk pass for one agent through the API
Called by: nightly cron job per agent account
Verifies: every contact is scored, metrics stored, alerts raised
"""

import os
import sys

import requests

# ── Config ──
API_BASE_URL = os.environ.get("API_BASE_URL", "http://risk-api-service:8000")
API_TOKEN = os.environ["API_TOKEN"]

TIMEOUT_SECONDS = 1800  # 30 min max per pass


def api_headers() -> dict:
    return {"Authorization": f"Bearer {API_TOKEN}"}


def fetch_contacts() -> list:
    resp = requests.get(f"{API_BASE_URL}/contacts", headers=api_headers(), timeout=30)
    resp.raise_for_status()
    return resp.json()


def run_scan(contacts: list) -> dict:
    """Submit one bulk pass and return the API's response body."""
    payload = {
        "contact_ids": [c["id"] for c in contacts],
        "contact_names": {c["id"]: c["full_name"] for c in contacts},
    }
    resp = requests.post(
        f"{API_BASE_URL}/risk/calculate",
        json=payload,
        headers=api_headers(),
        timeout=TIMEOUT_SECONDS,
    )
    resp.raise_for_status()
    return resp.json()


def main():
    print("=" * 60)
    print("  Risk Scan")
    print(f"  API: {API_BASE_URL}")
    print("=" * 60)

    contacts = fetch_contacts()
    print(f"\n  Contacts to score: {len(contacts)}")
    if not contacts:
        print("\nNothing to scan.")
        sys.exit(0)

    result = run_scan(contacts)
    summary = result["summary"]

    print("\n" + "=" * 60)
    print("  Risk Scan Results:")
    print("=" * 60)
    print(f"  Analyzed:       {summary['analyzed']}/{len(contacts)}")
    print(f"  Alerts created: {summary['alerts_created']}")
    for note in result.get("notifications", []):
        print(f"  [{note['title']}] {note['description']}")

    if not summary["completed"]:
        print("\nRISK SCAN ABORTED")
        sys.exit(1)
    else:
        print("\nRisk scan completed.")
        sys.exit(0)


if __name__ == "__main__":
    main()
