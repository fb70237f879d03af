#!/usr/bin/env python3
"""
Keyward Quickstart — account → token → profile → passkey options → revoke.

Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: keyward serve (http://localhost:4000)
"""

import sys
import uuid

import httpx

BASE = "http://localhost:4000"
CLIENT = ("keyward-client", "keyward-secret")


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        sys.exit(1)
    health = resp.json()
    print(f"  Status:   {health['status']}")
    print(f"  Database: {health.get('database')}")

    # ── Register ──────────────────────────────────────────────────
    email = f"demo-{run_id}@example.com"
    password = "demo-password-123"
    print(f"\n1. Registering {email}...")
    resp = client.post("/register", json={"email": email, "password": password, "name": "Demo"})
    assert resp.status_code == 201, f"Failed: {resp.text}"
    print(f"   Account: {resp.json()['id']}")

    # ── Password grant ────────────────────────────────────────────
    print("\n2. Requesting an access token (password grant, HTTP Basic client auth)...")
    resp = client.post(
        "/token",
        data={"grant_type": "password", "username": email, "password": password},
        auth=CLIENT,
    )
    assert resp.status_code == 200, f"Failed: {resp.text}"
    token = resp.json()["access_token"]
    print(f"   Expires in: {resp.json()['expires_in']}s")
    auth = {"Authorization": f"Bearer {token}"}

    # ── Profile ───────────────────────────────────────────────────
    print("\n3. Reading and updating the profile...")
    resp = client.put("/profile", json={"name": f"Demo {run_id}"}, headers=auth)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Name: {resp.json()['name']}")

    # ── Passkey registration, first half ─────────────────────────
    print("\n4. Starting passkey registration...")
    resp = client.post("/webauthn/register/begin", headers=auth)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    options = resp.json()["publicKey"]
    print(f"   RP:        {options['rp']['id']}")
    print(f"   Challenge: {options['challenge'][:16]}...")
    print(f"   Session:   {resp.headers['X-WebAuthn-Session'][:16]}...")
    print("   (a browser would now call navigator.credentials.create())")

    # ── Revoke ────────────────────────────────────────────────────
    print("\n5. Revoking the token...")
    resp = client.post("/revoke", data={"token": token}, auth=CLIENT)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    resp = client.get("/profile", headers=auth)
    print(f"   /profile after revoke: {resp.status_code}")

    print("\nDone.")


if __name__ == "__main__":
    main()
