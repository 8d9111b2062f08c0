#!/usr/bin/env python3
"""
Seed script — creates a realistic dataset for poking at the feeds.

Creates:
  • 10 users
  • 3 communities and 6 albums (written straight to the database; neither
    has a create endpoint)
  • A follow graph (each user follows 4 others) and community memberships
  • 5 link posts per user, some shared to communities
  • Upvotes, comments and album ratings/reviews across the dataset

Run after docker compose up:
  DATABASE_URL=mysql+aiomysql://root:@localhost:4000/needledrop \\
      python scripts/seed_data.py --api-url http://localhost:8000

All IDs are printed so you can use them in curl commands.
"""
import argparse
import asyncio
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from needledrop.database import build_engine, build_sessionmaker, init_db
from needledrop.models import Album, Community


BASE_USERS = [
    ("alice_loops", "Alice Chen"),
    ("bob_basslines", "Bob Martinez"),
    ("carol_crates", "Carol Singh"),
    ("dave_dub", "Dave Kim"),
    ("eve_echoes", "Eve Johnson"),
    ("frank_fuzz", "Frank Williams"),
    ("grace_grooves", "Grace Li"),
    ("henry_hooks", "Henry Brown"),
    ("iris_indie", "Iris Davis"),
    ("jack_jungle", "Jack Wilson"),
]

COMMUNITIES = [("shoegaze", "Shoegaze"), ("jungle", "Jungle & DnB"), ("city-pop", "City Pop")]

ALBUMS = [
    ("Loveless", "My Bloody Valentine"),
    ("Timeless", "Goldie"),
    ("For You", "Tatsuro Yamashita"),
    ("Souvlaki", "Slowdive"),
    ("Music for the Jilted Generation", "The Prodigy"),
    ("Pacific Breeze", "Various"),
]

SAMPLE_POSTS = [
    ("This bridge still gives me chills every time.", "track"),
    ("Front to back, no skips. Put it on tonight.", "album"),
    ("Made a playlist for late-night drives.", "playlist"),
    ("Found this on a 2am crate dig, who else knows it?", "track"),
    ("The production on this record aged perfectly.", "album"),
    ("Rainy day rotation, updated weekly.", "playlist"),
    ("That breakbeat at 1:42 is unreal.", "track"),
    ("Underrated debut. Deserved way more attention.", "album"),
    ("Opening track sets the whole mood.", "track"),
    ("Vinyl reissue just dropped, grabbed it day one.", "album"),
]

SAMPLE_COMMENTS = ["On repeat.", "Never heard this, thanks!", "Classic.", "The bassline 🔥"]

SAMPLE_REVIEWS = [
    "A wall of sound that somehow feels intimate.",
    "Holds up decades later. Sequencing is perfect.",
    "Some filler in the back half but the highs are very high.",
]


@dataclass
class ApiClient:
    base_url: str

    def request(self, method: str, path: str, user_id: Optional[str] = None, data=None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["X-User-Id"] = user_id
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                raw = resp.read()
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def get(self, path: str) -> dict:
        return self.request("GET", path)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except urllib.error.URLError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


async def seed_catalog() -> tuple[list[str], list[str]]:
    """Insert communities and albums; returns their ids."""
    engine = build_engine()
    await init_db(engine)
    sessions = build_sessionmaker(engine)

    communities = [Community(slug=slug, name=name) for slug, name in COMMUNITIES]
    albums = [Album(title=title, artist_name=artist) for title, artist in ALBUMS]
    async with sessions() as session, session.begin():
        session.add_all(communities + albums)
    await engine.dispose()
    return [c.community_id for c in communities], [a.album_id for a in albums]


def main(api_url: str) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Catalog ──────────────────────────────────────────────────────────
    print("Creating communities and albums...")
    community_ids, album_ids = asyncio.run(seed_catalog())
    print(f"  ✓ {len(community_ids)} communities, {len(album_ids)} albums")

    # ── Users ────────────────────────────────────────────────────────────
    print("\nCreating users...")
    user_ids: list[str] = []
    for username, display_name in BASE_USERS:
        result = client.request(
            "POST", "/users/", data={"username": username, "display_name": display_name}
        )
        uid = result.get("user_id", "")
        if uid:
            user_ids.append(uid)
            print(f"  ✓ {username} ({uid})")
        else:
            print(f"  ✗ Failed to create {username}")

    if not user_ids:
        print("No users created — aborting")
        return

    # ── Social graph ─────────────────────────────────────────────────────
    print("\nCreating follows and memberships...")
    memberships: dict[str, list[str]] = {}
    for user_id in user_ids:
        for followee_id in random.sample([u for u in user_ids if u != user_id], k=4):
            client.request("POST", f"/users/{followee_id}/follow", user_id)
        joined = random.sample(community_ids, k=random.randint(0, len(community_ids)))
        for community_id in joined:
            client.request("POST", f"/communities/{community_id}/members", user_id)
        memberships[user_id] = joined
    print("  ✓ Follow graph and memberships created")

    # ── Posts ────────────────────────────────────────────────────────────
    print("\nCreating posts...")
    post_ids: list[str] = []
    for user_id in user_ids:
        for content, link_type in random.sample(SAMPLE_POSTS, k=5):
            shared = memberships[user_id][:1] if random.random() < 0.5 else []
            result = client.request(
                "POST",
                "/posts/",
                user_id,
                {
                    "content": content,
                    "link_url": f"https://open.spotify.com/{link_type}/{random.getrandbits(40):x}",
                    "link_type": link_type,
                    "community_ids": shared,
                },
            )
            if result.get("post_id"):
                post_ids.append(result["post_id"])
    print(f"  ✓ {len(post_ids)} posts created")

    # ── Engagement ───────────────────────────────────────────────────────
    print("\nAdding upvotes and comments...")
    upvotes = comments = 0
    for post_id in post_ids:
        for user_id in random.sample(user_ids, k=random.randint(0, 5)):
            if client.request("POST", f"/posts/{post_id}/upvote", user_id):
                upvotes += 1
        if random.random() < 0.3:
            commenter = random.choice(user_ids)
            body = {"content": random.choice(SAMPLE_COMMENTS)}
            if client.request("POST", f"/posts/{post_id}/comments", commenter, body):
                comments += 1
    print(f"  ✓ {upvotes} upvotes, {comments} comments added")

    print("\nRating albums...")
    ratings = 0
    for user_id in user_ids:
        for album_id in random.sample(album_ids, k=3):
            body = {"rating": random.randint(1, 5)}
            if random.random() < 0.4:
                body["body"] = random.choice(SAMPLE_REVIEWS)
            if client.request("PUT", f"/ratings/album/{album_id}", user_id, body):
                ratings += 1
    print(f"  ✓ {ratings} ratings added")

    # ── Summary ──────────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = user_ids[0]
    print(f"# Home feed for '{BASE_USERS[0][0]}', most upvoted first:")
    print(f"  curl -s -H 'X-User-Id: {u}' '{api_url}/feed/?sort=top' | python3 -m json.tool\n")
    print("# Reviews from people they follow:")
    print(f"  curl -s -H 'X-User-Id: {u}' '{api_url}/feed/activity' | python3 -m json.tool\n")
    print("# Popular reviews this week:")
    print(f"  curl -s '{api_url}/reviews/popular?timeframe=week' | python3 -m json.tool\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus: http://localhost:9090")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Needledrop API")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    args = parser.parse_args()
    main(args.api_url)
