import json
import os

import requests

BASE = os.getenv("WP_BASE_URL", "http://127.0.0.1:8000")

USER = os.getenv("WP_USER", "admin")
PASSWORD = os.getenv("WP_PASS", "admin123")
CRON_SECRET = os.getenv("CRON_SECRET", "dev-secret")


def pretty(label, resp):
    print(f"\n=== {label} ===")
    print("STATUS:", resp.status_code)
    try:
        data = resp.json()
        print("JSON:", json.dumps(data, indent=2)[:400])
    except ValueError:
        print("RAW:", resp.text[:400])


def main():
    resp = requests.post(
        f"{BASE}/auth/login",
        data={"username": USER, "password": PASSWORD},
        headers={"accept": "application/json"},
    )
    pretty("LOGIN", resp)
    resp.raise_for_status()
    headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    pretty("EMAIL HEALTH /health/email", requests.get(f"{BASE}/health/email"))

    r_cron = requests.post(f"{BASE}/cron/daily-check", headers={"Authorization": f"Bearer {CRON_SECRET}"})
    pretty("DAILY CHECK /cron/daily-check", r_cron)

    pretty("SYNC /notifications/sync", requests.post(f"{BASE}/notifications/sync", headers=headers))

    r_list = requests.get(f"{BASE}/notifications", headers=headers, params={"only_unread": "true"})
    pretty("UNREAD /notifications", r_list)

    pretty("UNREAD COUNT", requests.get(f"{BASE}/notifications/unread-count", headers=headers))

    items = r_list.json().get("notifications", []) if r_list.ok else []
    if items:
        first = items[0]["id"]
        pretty(f"MARK READ {first}", requests.post(f"{BASE}/notifications/{first}/read", headers=headers))
    pretty("READ ALL", requests.post(f"{BASE}/notifications/read-all", headers=headers))


if __name__ == "__main__":
    main()
