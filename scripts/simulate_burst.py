#!/usr/bin/env python3
"""Fire a burst of identical notification requests at a running FieldAlert server."""

from __future__ import annotations

import argparse
import asyncio
from collections import Counter

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send N concurrent identical notification requests and report the admission split."
    )
    parser.add_argument("--base-url", default="http://localhost:8000", help="FieldAlert server URL.")
    parser.add_argument("--count", type=int, default=10, help="Number of concurrent requests.")
    parser.add_argument("--event-type", default="job.assigned")
    parser.add_argument("--entity-id", default="job-burst-1")
    parser.add_argument("--recipient-id", default="staff-001")
    parser.add_argument(
        "--decide-only",
        action="store_true",
        help="Use /decide instead of /send so nothing is delivered.",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    path = "/api/notifications/decide" if args.decide_only else "/api/notifications/send"
    payload = {
        "event_type": args.event_type,
        "entity_id": args.entity_id,
        "recipient_id": args.recipient_id,
        "content": {"title": "Burst test", "body": f"{args.entity_id} burst"},
        "source": "simulate_burst",
    }

    async with httpx.AsyncClient(base_url=args.base_url, timeout=30.0) as client:
        responses = await asyncio.gather(
            *(client.post(path, json=payload) for _ in range(args.count))
        )
        outcomes: Counter[str] = Counter()
        for resp in responses:
            resp.raise_for_status()
            body = resp.json()
            decision = body if args.decide_only else body["decision"]
            outcomes["allowed" if decision["allowed"] else decision["reason"]] += 1

        print(f"Sent {args.count} requests to {path}")
        for outcome, n in outcomes.most_common():
            print(f"  {outcome}: {n}")

        stats = (await client.get("/api/notifications/stats")).json()
        print("Service stats:")
        for key, value in stats.items():
            print(f"  {key}: {value}")


if __name__ == "__main__":
    asyncio.run(main())
