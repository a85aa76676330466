"""Seed a Duo account with sample tags and notes.

Signs in through the API, creates a handful of tags, then notes
tagged with them, marking a few as favorites and one as trashed.
Requires the API and data service to be running.

Usage:
    python scripts/seed_data.py --email you@example.com --password secret \
        [--base-url http://localhost:8000]
"""

from __future__ import annotations

import argparse
import sys
import time

import requests

DEFAULT_BASE_URL = "http://localhost:8000"
TIMEOUT = 30

# (name, color)
TAGS: list[tuple[str, str]] = [
    ("ideas", "#8B5CF6"),
    ("reading", "#3B82F6"),
    ("work", "#F97316"),
    ("personal", "#22C55E"),
]

# Each entry: (title, content, tags, favorite, trashed)
NOTES: list[tuple[str, str, list[str], bool, bool]] = [
    (
        "Project Ideas",
        "A bookmark importer that turns browser folders into tags.",
        ["ideas"],
        True,
        False,
    ),
    (
        "Reading List",
        "Designing Data-Intensive Applications; The Pragmatic Programmer.",
        ["reading"],
        False,
        False,
    ),
    (
        "Meeting Notes",
        "Agreed to ship bulk actions before the tag colour picker.",
        ["work"],
        False,
        False,
    ),
    (
        "Grocery List",
        "Eggs, spinach, oat milk, coffee beans.",
        ["personal"],
        True,
        False,
    ),
    (
        "Old Draft",
        "Superseded by Project Ideas.",
        ["ideas"],
        False,
        True,
    ),
]


def check_health(base_url: str) -> bool:
    """Verify the API is reachable."""
    try:
        resp = requests.get(f"{base_url}/health", timeout=10)
        return resp.json().get("status") == "healthy"
    except Exception as e:
        print(f"  Health check failed: {e}")
        return False


def login(base_url: str, email: str, password: str) -> dict[str, str]:
    """Sign in and return the auth header for later requests."""
    resp = requests.post(
        f"{base_url}/auth/login",
        json={"email": email, "password": password},
        timeout=TIMEOUT,
    )
    resp.raise_for_status()
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def ensure_tags(base_url: str, headers: dict[str, str]) -> dict[str, str]:
    """Create missing tags; return a name -> id map."""
    resp = requests.get(f"{base_url}/tags", headers=headers, timeout=TIMEOUT)
    resp.raise_for_status()
    ids = {t["name"]: t["id"] for t in resp.json()}
    for name, color in TAGS:
        if name in ids:
            continue
        resp = requests.post(
            f"{base_url}/tags",
            json={"name": name, "color": color},
            headers=headers,
            timeout=TIMEOUT,
        )
        resp.raise_for_status()
        ids[name] = resp.json()["id"]
        print(f"  Tag created: {name}")
    return ids


def create_note(
    base_url: str,
    headers: dict[str, str],
    title: str,
    content: str,
    tag_ids: list[str],
    favorite: bool,
    trashed: bool,
) -> None:
    """Create one note, tag it, and apply its flags."""
    resp = requests.post(
        f"{base_url}/notes",
        json={"title": title, "content": content},
        headers=headers,
        timeout=TIMEOUT,
    )
    resp.raise_for_status()
    note_id = resp.json()["id"]
    for tag_id in tag_ids:
        requests.put(
            f"{base_url}/notes/{note_id}/tags/{tag_id}", headers=headers, timeout=TIMEOUT
        ).raise_for_status()
    if favorite:
        requests.post(
            f"{base_url}/notes/{note_id}/favorite", headers=headers, timeout=TIMEOUT
        ).raise_for_status()
    if trashed:
        requests.post(
            f"{base_url}/notes/{note_id}/trash", headers=headers, timeout=TIMEOUT
        ).raise_for_status()


def main() -> None:
    """Seed tags and notes sequentially."""
    parser = argparse.ArgumentParser(description="Seed a Duo account with sample notes")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help=f"Duo API base URL (default: {DEFAULT_BASE_URL})",
    )
    args = parser.parse_args()
    base_url = args.base_url.rstrip("/")

    print(f"\n  Seeding data via {base_url}")
    print("  " + "=" * 58)

    if not check_health(base_url):
        print("  FAIL: API is not healthy. Is it running?")
        sys.exit(1)

    try:
        headers = login(base_url, args.email, args.password)
    except requests.HTTPError as e:
        print(f"  FAIL: could not sign in ({e})")
        sys.exit(1)

    start = time.time()
    tag_ids = ensure_tags(base_url, headers)

    created = 0
    for i, (title, content, tags, favorite, trashed) in enumerate(NOTES, 1):
        print(f"  [{i}/{len(NOTES)}] {title}")
        try:
            create_note(
                base_url,
                headers,
                title,
                content,
                [tag_ids[t] for t in tags],
                favorite,
                trashed,
            )
            created += 1
        except requests.HTTPError as e:
            print(f"         ERROR:   {e}")

    requests.post(f"{base_url}/auth/logout", headers=headers, timeout=TIMEOUT)

    print("  " + "=" * 58)
    print(f"  Done! {created}/{len(NOTES)} notes in {time.time() - start:.1f}s.")
    print("    - Streamlit UI:  http://localhost:8501")
    print("    - API Docs:      http://localhost:8000/docs")
    print()


if __name__ == "__main__":
    main()
