import json
import os
import sys

import requests

BASE = os.getenv("WP_BASE_URL", "http://127.0.0.1:8000")

USER = os.getenv("WP_USER", "admin")
PASSWORD = os.getenv("WP_PASS", "admin123")
MANUFACTURER_EMAIL = os.getenv("WP_MANUFACTURER_EMAIL", "support@example.com")


def pretty(label, resp):
    print(f"\n=== {label} ===")
    print("STATUS:", resp.status_code)
    try:
        data = resp.json()
        print("JSON:", json.dumps(data, indent=2)[:600])
    except ValueError:
        print("RAW:", resp.text[:600])


def main():
    if len(sys.argv) < 2:
        print("usage: smoke_test_claims_flow.py <warranty_id>")
        return
    warranty_id = sys.argv[1]

    resp = requests.post(
        f"{BASE}/auth/login",
        data={"username": USER, "password": PASSWORD},
        headers={"accept": "application/json"},
    )
    pretty("LOGIN", resp)
    resp.raise_for_status()
    headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    pretty("LLM HEALTH /health/llm", requests.get(f"{BASE}/health/llm"))

    issue = "The screen flickers and goes black after a few minutes."
    r_diag = requests.post(
        f"{BASE}/api/claims/diagnose",
        headers=headers,
        json={"warranty_id": warranty_id, "message": issue},
    )
    pretty("DIAGNOSE", r_diag)
    history = r_diag.json().get("conversation_history", []) if r_diag.ok else []

    r_sev = requests.post(
        f"{BASE}/api/claims/analyze-severity",
        headers=headers,
        json={"issue_description": issue, "conversation_history": history},
    )
    pretty("SEVERITY", r_sev)

    r_steps = requests.post(
        f"{BASE}/api/claims/generate-troubleshooting",
        headers=headers,
        json={"warranty_id": warranty_id, "issue_description": issue},
    )
    pretty("TROUBLESHOOTING", r_steps)

    r_claim = requests.post(
        f"{BASE}/api/claims",
        headers=headers,
        json={"warranty_id": warranty_id, "issue_description": issue, "conversation_history": history},
    )
    pretty("START CLAIM", r_claim)
    r_claim.raise_for_status()
    claim_id = r_claim.json()["id"]

    r_email = requests.post(
        f"{BASE}/api/claims/generate-email",
        headers=headers,
        json={"warranty_id": warranty_id, "issue_description": issue, "claim_id": claim_id},
    )
    pretty("GENERATE EMAIL", r_email)
    draft = r_email.json() if r_email.ok else {"subject": "Warranty claim", "body": issue}

    r_submit = requests.post(
        f"{BASE}/api/claims/{claim_id}/submit",
        headers=headers,
        json={
            "manufacturer_email": MANUFACTURER_EMAIL,
            "email_subject": draft["subject"],
            "email_body": draft["body"],
        },
    )
    pretty("SUBMIT", r_submit)

    r_status = requests.patch(
        f"{BASE}/api/claims/{claim_id}/status",
        headers=headers,
        json={"status": "in_progress", "notes": "smoke test"},
    )
    pretty("STATUS -> in_progress", r_status)

    pretty("LIST CLAIMS", requests.get(f"{BASE}/api/claims", headers=headers))


if __name__ == "__main__":
    main()
