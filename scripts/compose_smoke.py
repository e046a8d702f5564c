#!/usr/bin/env python3
from __future__ import annotations

import os
import sys
import time

import httpx


def main() -> int:
    base_url = os.getenv("ANSWERENGINE_API_URL", "http://localhost:8000").rstrip("/")
    query = os.getenv("ANSWERENGINE_SMOKE_QUERY", "What is the capital of France?")
    try:
        with httpx.Client(base_url=base_url, timeout=30) as client:
            health = client.get("/healthz")
            health.raise_for_status()
            print("/healthz:", health.text)
            # Give the service a moment to finish boot
            time.sleep(0.5)
            ready = client.get("/healthz/ready")
            ready.raise_for_status()
            print("/healthz/ready:", ready.text)
            chat = client.post("/chat", json={"query": query})
            chat.raise_for_status()
            payload = chat.json()
    except httpx.HTTPError as exc:
        print(f"Smoke check failed: {exc}", file=sys.stderr)
        return 1
    if payload.get("error"):
        print(f"Chat returned an error response: {payload.get('llmResponse')}", file=sys.stderr)
        return 1
    print(f"/chat: {len(payload.get('searchResults', []))} search results")
    print(payload.get("llmResponse", ""))
    print("Smoke check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
