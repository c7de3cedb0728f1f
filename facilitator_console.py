"""CLI for driving a running Crawlhub session as the facilitator.

Connects to the server's session endpoints with the facilitator secret.
The server must be running for this tool to work.

Usage:
    python facilitator_console.py status
    python facilitator_console.py start --crawler c1 --crawler c2 --episode ep1
    python facilitator_console.py confirm
    python facilitator_console.py next
    python facilitator_console.py end
    python facilitator_console.py turn
    python facilitator_console.py rest --kind long --crawler c1 --crawler c2
    python facilitator_console.py reset

Environment variables:
    CRAWLHUB_URL         Server URL (default: http://127.0.0.1:8000)
    FACILITATOR_SECRET   Facilitator secret for the server (default: change-me-in-production)
"""

import argparse
import os
import sys

import httpx

DEFAULT_URL = os.environ.get("CRAWLHUB_URL", "http://127.0.0.1:8000")
FACILITATOR_SECRET = os.environ.get("FACILITATOR_SECRET", "change-me-in-production")


def _request(method: str, url: str, **kwargs) -> httpx.Response:
    """Make an HTTP request with the facilitator secret, handling connection errors."""
    kwargs.setdefault("headers", {})["X-Facilitator-Secret"] = FACILITATOR_SECRET
    kwargs.setdefault("timeout", 10.0)
    try:
        return httpx.request(method, url, **kwargs)
    except httpx.ConnectError:
        print(f"Error: Could not connect to server at {url}", file=sys.stderr)
        print("Is the server running?", file=sys.stderr)
        sys.exit(1)


def _handle_error(resp: httpx.Response) -> None:
    """Handle common error status codes."""
    if resp.status_code == 403:
        print("Error: Invalid facilitator secret", file=sys.stderr)
        print("Set FACILITATOR_SECRET env var to match the server's config", file=sys.stderr)
        sys.exit(1)
    elif resp.status_code in (400, 404, 409):
        detail = resp.json().get("detail", "Rejected")
        print(f"Error: {detail}", file=sys.stderr)
        sys.exit(1)
    elif resp.status_code == 503:
        print("Error: The session store is unavailable; try again", file=sys.stderr)
        sys.exit(1)
    elif resp.status_code != 200:
        print(f"Error: {resp.status_code} {resp.text}", file=sys.stderr)
        sys.exit(1)


def show_status(url: str, episode_id: str | None) -> None:
    """Print the encounter's turn order, or the noncombat turn summary."""
    params = {"episode_id": episode_id} if episode_id else {}
    resp = _request("GET", f"{url}/session/combat", params=params)
    _handle_error(resp)
    data = resp.json()
    if data["combat"] is None or not data["combat"]["active"]:
        resp = _request("GET", f"{url}/session/turns")
        _handle_error(resp)
        turns = resp.json()
        number = turns["turns"]["turn_number"] if turns["turns"] else 0
        print(f"No encounter. Noncombat turn {number}.")
        for crawler_id, remaining in turns["rolls_remaining"].items():
            print(f"  {crawler_id:<20} {remaining} roll(s) left")
        return

    combat = data["combat"]
    print(f"Encounter #{combat['combat_count']}  phase={combat['phase']}  round={combat['combat_round']}")
    print(f"{'':2}{'ID':<20} {'NAME':<20} {'INIT':>4} {'HP':>5}")
    print("-" * 54)
    for c in data["combatants"]:
        marker = "> " if c["id"] == data["current_combatant_id"] else "  "
        init = c["initiative"] if c["has_rolled_initiative"] else "-"
        hp = c["hp"]["value"] if c["hp"]["kind"] == "tracked" else c.get("nominal_hp", "")
        print(f"{marker}{c['id']:<20} {c['name']:<20} {init:>4} {hp if hp is not None else '':>5}")


def start_combat(url: str, crawler_ids: list[str], episode_id: str | None) -> None:
    """Start an encounter against the episode's placed mobs."""
    body = {
        "participant_ids": crawler_ids,
        "episode_id": episode_id,
        "from_episode": episode_id is not None,
    }
    resp = _request("POST", f"{url}/session/combat/start", json=body)
    _handle_error(resp)
    print("Encounter started. Waiting on initiative.")


def advance_turn(url: str) -> None:
    """Advance to the next combatant.

    The turn shown by the server is sent back as the expected turn, so a
    retried or duplicated command cannot advance twice.
    """
    resp = _request("GET", f"{url}/session/combat")
    _handle_error(resp)
    data = resp.json()
    if data["combat"] is None or not data["combat"]["active"]:
        print("Error: No encounter is running", file=sys.stderr)
        sys.exit(1)
    resp = _request("POST", f"{url}/session/combat/advance", json={"expected": data["turn"]})
    _handle_error(resp)
    print("Turn advanced.")


def _post(url: str, path: str, message: str, **kwargs) -> None:
    resp = _request("POST", f"{url}{path}", **kwargs)
    _handle_error(resp)
    print(message)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Drive a Crawlhub session as the facilitator",
    )

    url_kwargs = dict(
        default=DEFAULT_URL,
        help=f"Server URL (default: {DEFAULT_URL}, or set CRAWLHUB_URL env var)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show the current turn state")
    status_parser.add_argument("--episode", help="Loaded episode id")
    status_parser.add_argument("--url", **url_kwargs)

    start_parser = subparsers.add_parser("start", help="Start an encounter")
    start_parser.add_argument("--crawler", action="append", default=[], help="Crawler id (repeatable)")
    start_parser.add_argument("--episode", help="Episode whose placed mobs join the encounter")
    start_parser.add_argument("--url", **url_kwargs)

    for name, help_text in (
        ("confirm", "Lock initiative order and begin round 1"),
        ("next", "Advance to the next combatant"),
        ("end", "End the encounter, keeping adversary HP"),
        ("cancel", "Abort the encounter"),
        ("turn", "Start the next noncombat turn"),
        ("reset", "Cancel any encounter and reset noncombat turns"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--url", **url_kwargs)

    rest_parser = subparsers.add_parser("rest", help="Rest crawlers")
    rest_parser.add_argument("--kind", choices=["short", "long"], required=True)
    rest_parser.add_argument("--crawler", action="append", default=[], help="Crawler id (repeatable)")
    rest_parser.add_argument("--url", **url_kwargs)

    args = parser.parse_args()

    if args.command == "status":
        show_status(args.url, args.episode)
    elif args.command == "start":
        start_combat(args.url, args.crawler, args.episode)
    elif args.command == "confirm":
        _post(args.url, "/session/combat/confirm", "Initiative confirmed. Round 1.")
    elif args.command == "next":
        advance_turn(args.url)
    elif args.command == "end":
        _post(args.url, "/session/combat/end", "Encounter ended.")
    elif args.command == "cancel":
        _post(args.url, "/session/combat/cancel", "Encounter cancelled.")
    elif args.command == "turn":
        _post(args.url, "/session/turns/start", "Noncombat turn started.")
    elif args.command == "reset":
        _post(args.url, "/admin/reset", "Session reset.")
    elif args.command == "rest":
        _post(
            args.url,
            f"/session/rest/{args.kind}",
            f"{args.kind.capitalize()} rest taken.",
            json={"crawler_ids": args.crawler},
        )


if __name__ == "__main__":
    main()
