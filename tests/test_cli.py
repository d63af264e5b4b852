import pytest

from cinesync.cli import parse_args


def test_join_takes_room_and_options():
    args = parse_args(["join", "movie-night", "--url", "ws://relay:8931/rooms", "--no-voice"])

    assert args.command == "join"
    assert args.room == "movie-night"
    assert args.url == "ws://relay:8931/rooms"
    assert args.no_voice is True


def test_join_without_room_leaves_it_unset():
    args = parse_args(["join"])

    assert args.command == "join"
    assert args.room is None


def test_command_is_required():
    with pytest.raises(SystemExit):
        parse_args([])


def test_list_relays_needs_no_command():
    args = parse_args(["--list-relays"])

    assert args.list_relays is True
    assert args.command is None
