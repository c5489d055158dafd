#!/usr/bin/env python3
"""Look up a newsletter channel through a websocket node bridge.

This example demonstrates:
- websocket URL/token configuration
- observing the auto-follow burst on first open
- invite URL lookup and full metadata fetch
- live update subscription and a small message fetch
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import os
import sys

from newsletter_socket_client import (
    FollowResult,
    NewsletterClient,
    NewsletterConfig,
    NewsletterServerError,
    NewsletterTransportError,
    NewsletterUnexpectedResponseError,
)


def parse_args() -> argparse.Namespace:
    """Parse CLI options for the lookup example."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "invite_url",
        help="Channel invite URL, e.g. https://whatsapp.com/channel/<code>/",
    )
    parser.add_argument(
        "--url",
        default=os.getenv("NEWSLETTER_BRIDGE_WS_URL", "ws://127.0.0.1:8765"),
        help="Websocket URL of the node bridge.",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("NEWSLETTER_BRIDGE_TOKEN"),
        help="Optional bearer token for websocket auth.",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=5,
        help="Number of recent messages to fetch.",
    )
    parser.add_argument(
        "--no-auto-follow",
        action="store_true",
        help="Disable the auto-follow burst on connect.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def _report_follow(results: list[FollowResult]) -> None:
    for result in results:
        status = "ok" if result.ok else f"failed ({result.error})"
        print(f"[follow] {result.jid}: {status}")


def _fmt_number(value: float) -> str:
    return "n/a" if math.isnan(value) else str(value)


async def run_lookup(args: argparse.Namespace) -> int:
    """Resolve the invite URL and print channel details."""
    config = NewsletterConfig()
    if args.no_auto_follow:
        config = NewsletterConfig(auto_follow_channels=())

    client = NewsletterClient.connect_websocket(
        url=args.url,
        token=args.token,
        config=config,
        on_auto_follow=_report_follow,
    )

    try:
        await client.start()
        summary = await client.lookup_by_invite_url(args.invite_url)
        print(f"[lookup] {summary}")

        invite = args.invite_url.rstrip("/").split("/")[-1]
        metadata = await client.fetch_metadata("invite", invite)
        print(
            "[meta]"
            f" id={metadata.id}"
            f" name={metadata.name!r}"
            f" subscribers={_fmt_number(metadata.subscribers)}"
            f" reactions={metadata.reaction_codes}"
            f" picture={metadata.picture}"
        )

        if metadata.id:
            live = await client.subscribe_live_updates(metadata.id)
            print(f"[live] {live}")

        for update in await client.fetch_messages("invite", invite, args.count):
            reactions = ", ".join(f"{r.code}x{r.count}" for r in update.reactions)
            print(f"[message] server_id={update.server_id} views={update.views} reactions=[{reactions}]")
        return 0
    except NewsletterServerError as exc:
        print(f"[error] server: status={exc.status_code} {exc}", file=sys.stderr)
        return 2
    except NewsletterUnexpectedResponseError as exc:
        print(f"[error] unexpected response: {exc}", file=sys.stderr)
        return 3
    except NewsletterTransportError as exc:
        print(f"[error] transport: {exc}", file=sys.stderr)
        return 4
    except KeyboardInterrupt:
        print("\n[interrupt] user cancelled lookup", file=sys.stderr)
        return 130
    finally:
        await client.close()


def main() -> None:
    """CLI entrypoint."""
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    raise SystemExit(asyncio.run(run_lookup(args)))


if __name__ == "__main__":
    main()
