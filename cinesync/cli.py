"""Command-line interface for CineSync."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from collections.abc import Sequence

from cinesync.discovery import discover_relays
from cinesync.relay import RelayConfig, run_relay


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for CineSync."""
    parser = argparse.ArgumentParser(
        prog="cinesync", description="Watch a video in sync with a friend"
    )
    parser.add_argument(
        "--list-audio-devices",
        action="store_true",
        help="List available audio devices for voice and exit",
    )
    parser.add_argument(
        "--list-relays",
        action="store_true",
        help="Discover and list available CineSync relays on the network",
    )
    subparsers = parser.add_subparsers(dest="command")

    join = subparsers.add_parser("join", help="Join a watch room")
    join.add_argument(
        "room",
        nargs="?",
        default=None,
        help="Room name shared with the other viewer. If omitted, a new room is created.",
    )
    join.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the relay. If omitted, discover via mDNS.",
    )
    join.add_argument(
        "--name",
        default=None,
        help="Display name for this viewer (defaults to hostname)",
    )
    join.add_argument(
        "--video-url",
        default=None,
        help="Video URL to share with the room after joining",
    )
    join.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    join.add_argument(
        "--audio-device",
        type=str,
        default=None,
        help=(
            "Audio device for voice by index (e.g., 0, 1, 2) or name prefix (e.g., 'MacBook'). "
            "Use --list-audio-devices to see available devices."
        ),
    )
    join.add_argument(
        "--no-voice",
        action="store_true",
        help="Disable the walkie-talkie",
    )
    join.add_argument(
        "--headless",
        action="store_true",
        help="Run without the interactive terminal UI",
    )

    serve = subparsers.add_parser("serve", help="Run a relay for watch rooms")
    serve.add_argument("--port", type=int, default=8931, help="Port to listen on")
    serve.add_argument("--name", default="CineSync Relay", help="Relay name")
    serve.add_argument(
        "--no-advertise",
        action="store_true",
        help="Do not advertise the relay via mDNS",
    )
    serve.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )

    args = parser.parse_args(argv)
    if args.command is None and not (args.list_audio_devices or args.list_relays):
        parser.error("a command is required (join or serve)")
    return args


def list_audio_devices() -> None:
    """List all available audio devices."""
    # sounddevice needs PortAudio, so import it only when asked
    import sounddevice  # noqa: PLC0415

    from cinesync.walkie import query_devices  # noqa: PLC0415

    try:
        devices = query_devices()
    except sounddevice.PortAudioError as e:
        print(f"Error listing audio devices: {e}")
        sys.exit(1)

    print("Available audio devices:")
    print()
    for device in devices:
        markers = []
        if device.is_default_input:
            markers.append("default input")
        if device.is_default_output:
            markers.append("default output")
        default_marker = f" ({', '.join(markers)})" if markers else ""
        print(
            f"  [{device.index}] {device.name}{default_marker}\n"
            f"       Inputs: {device.input_channels}, Outputs: {device.output_channels}"
        )
    if devices:
        print("\nTo select an audio device:\n  cinesync join <room> --audio-device 0")


async def list_relays() -> None:
    """Discover and list all CineSync relays on the network."""
    try:
        relays = await discover_relays(discovery_time=3.0)
    except OSError as e:
        print(f"Error discovering relays: {e}")
        sys.exit(1)
    if not relays:
        print("No CineSync relays found.")
        return

    print(f"\nFound {len(relays)} relay(s):")
    print()
    for relay in relays:
        print(f"  {relay.name}")
        print(f"    URL:  {relay.url}")
    print(f"\nTo join a room:\n  cinesync join <room> --url {relays[0].url}")


def main() -> int:
    """Run the CLI."""
    args = parse_args(sys.argv[1:])
    if args.list_audio_devices:
        list_audio_devices()
        return 0

    if args.list_relays:
        asyncio.run(list_relays())
        return 0

    if args.command == "serve":
        logging.basicConfig(level=getattr(logging, args.log_level))
        relay_config = RelayConfig(
            port=args.port, name=args.name, advertise=not args.no_advertise
        )
        try:
            return asyncio.run(run_relay(relay_config))
        except KeyboardInterrupt:
            return 0

    from cinesync.app import AppConfig, CineSyncApp  # noqa: PLC0415

    room = args.room
    if room is None:
        room = str(uuid.uuid4())
        print(f"Created room {room}\nShare it with: cinesync join {room}")

    config = AppConfig(
        room=room,
        url=args.url,
        name=args.name,
        video_url=args.video_url,
        audio_device=args.audio_device,
        voice=not args.no_voice,
        log_level=args.log_level,
        headless=args.headless,
    )
    app = CineSyncApp(config)
    return asyncio.run(app.run())


if __name__ == "__main__":
    raise SystemExit(main())
