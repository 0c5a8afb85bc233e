from __future__ import annotations

import argparse
import asyncio

from yige_radio.config import Settings, configure_logging, env_int, load_local_env_file
from yige_radio.models import format_duration
from yige_radio.service import RadioService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Yige Radio: zero-input recommendations")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (defaults to HOST env or 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Port (defaults to PORT env or 8000)")

    recommend = subparsers.add_parser("recommend", help="Print one recommendation batch")
    recommend.add_argument("--user-id", default="anonymous")
    recommend.add_argument(
        "--count",
        type=int,
        default=env_int("RECOMMENDATION_COUNT", 20),
        help="Batch size (defaults to RECOMMENDATION_COUNT env or 20)",
    )

    history = subparsers.add_parser("history", help="Print a listener's recent actions")
    history.add_argument("--user-id", required=True)
    history.add_argument("--action", default=None)
    history.add_argument("--limit", type=int, default=50)

    play = subparsers.add_parser("play", help="Simulate a session by skipping through the queue")
    play.add_argument("--user-id", default="anonymous")
    play.add_argument("--steps", type=int, default=5)
    return parser.parse_args(argv)


def print_recommendations(service: RadioService, user_id: str, count: int) -> None:
    recs = service.get_recommendations(user_id, count)
    label = "personalised" if recs.has_preferences else "popular"
    print(
        f"{len(recs.tracks)} {label} tracks for {user_id} "
        f"({recs.preferred_artist_count} preferred artists, {recs.blacklisted_artist_count} blacklisted)"
    )
    for track in recs.tracks:
        print(f"  {track.id:<12} {track.title} - {track.artist_name or track.artist_id} [{format_duration(track.duration)}]")


def print_history(service: RadioService, user_id: str, action: str | None, limit: int) -> None:
    events = service.history(user_id, action=action, limit=limit)
    if not events:
        print(f"No recorded actions for {user_id}.")
        return
    for event in events:
        print(f"{event.timestamp.isoformat()}  {event.action:<10} track={event.track_id} artist={event.artist_id}")


async def simulate_session(service: RadioService, user_id: str, steps: int) -> None:
    session = await service.open_session(user_id)
    try:
        for _ in range(steps):
            current = session.current
            if current is None:
                print("Queue drained.")
                break
            print(f"Now playing: {current.title} - {current.artist_name or current.artist_id} ({len(session.pending)} queued)")
            await session.skip()
    finally:
        await service.close_session(session.session_id)


def main(argv: list[str] | None = None) -> None:
    load_local_env_file()
    args = parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("yige_radio.api:app", host=args.host or settings.host, port=args.port or settings.port)
        return

    service = RadioService.from_settings(settings)
    if args.command == "recommend":
        print_recommendations(service, args.user_id, args.count)
    elif args.command == "history":
        print_history(service, args.user_id, args.action, args.limit)
    elif args.command == "play":
        asyncio.run(simulate_session(service, args.user_id, args.steps))


if __name__ == "__main__":
    main()
