"""Rich-based terminal UI for CineSync."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Self

from rich.console import Console, ConsoleOptions, RenderResult
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cinesync.sync import SyncState


class _RefreshableLayout:
    """A renderable that rebuilds on each render cycle."""

    def __init__(self, ui: CineSyncUI) -> None:
        self._ui = ui

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        """Rebuild and yield the layout on each render."""
        yield self._ui._build_layout()  # noqa: SLF001


# Duration in seconds to highlight a pressed shortcut
SHORTCUT_HIGHLIGHT_DURATION = 0.15

_STATE_STYLES = {
    SyncState.IDLE: "dim",
    SyncState.REQUESTING: "yellow",
    SyncState.WAITING_ACK: "yellow",
    SyncState.SYNCING: "yellow bold",
    SyncState.PLAYING: "green bold",
    SyncState.PAUSED: "cyan",
}


@dataclass
class UIState:
    """Holds state for the UI display."""

    # Connection
    relay_url: str | None = None
    room: str | None = None
    connected: bool = False
    status_message: str = "Initializing..."
    peer_id: str | None = None
    members: list[str] = field(default_factory=list)
    notice: str | None = None

    # Playback
    video_url: str = ""
    sync_state: SyncState = SyncState.IDLE
    position: float = 0.0
    position_updated_at: float = 0.0  # time.monotonic() when position was sampled
    playing: bool = False

    # Volume
    user_volume: int = 80
    output_volume: int = 80
    ducked: bool = False

    # Voice
    voice_available: bool = False
    talking: bool = False
    talk_remaining: float = 0.0
    receiving_voice: bool = False

    # URL input
    url_input: str | None = None

    # Shortcut highlight
    highlighted_shortcut: str | None = None
    highlight_time: float = 0.0


class CineSyncUI:
    """Rich-based terminal UI for CineSync."""

    def __init__(self) -> None:
        """Initialize the UI."""
        self._console = Console()
        self._state = UIState()
        self._live: Live | None = None
        self._running = False

    @property
    def state(self) -> UIState:
        """Get the UI state for external updates."""
        return self._state

    def _format_time(self, seconds: float | None) -> str:
        """Format seconds as H:MM:SS or MM:SS."""
        if seconds is None:
            return "--:--"
        total = int(seconds)
        hours, rest = divmod(total, 3600)
        minutes, secs = divmod(rest, 60)
        if hours:
            return f"{hours}:{minutes:02d}:{secs:02d}"
        return f"{minutes:02d}:{secs:02d}"

    def _is_highlighted(self, shortcut: str) -> bool:
        """Check if a shortcut should be highlighted."""
        if self._state.highlighted_shortcut != shortcut:
            return False
        elapsed = time.monotonic() - self._state.highlight_time
        return elapsed < SHORTCUT_HIGHLIGHT_DURATION

    def _shortcut_style(self, shortcut: str) -> str:
        """Get the style for a shortcut key."""
        return "bold yellow reverse" if self._is_highlighted(shortcut) else "bold cyan"

    def highlight_shortcut(self, shortcut: str) -> None:
        """Highlight a shortcut temporarily."""
        self._state.highlighted_shortcut = shortcut
        self._state.highlight_time = time.monotonic()
        self.refresh()

    def _current_position(self) -> float:
        position = self._state.position
        if self._state.playing and self._state.position_updated_at > 0:
            position += time.monotonic() - self._state.position_updated_at
        return position

    def _build_now_playing_panel(self, *, expand: bool = False) -> Panel:
        """Build the now playing panel."""
        if not self._state.video_url:
            content = Table.grid()
            content.add_column()
            content.add_row("")
            line1 = Text()
            line1.append("Press ", style="dim")
            line1.append("u", style="bold cyan")
            line1.append(" to choose a video URL", style="dim")
            content.add_row(line1)
            line2 = Text()
            line2.append("Press ", style="dim")
            line2.append("<space>", style="bold cyan")
            line2.append(" to start playing together", style="dim")
            content.add_row(line2)
            content.add_row("")
            content.add_row("")
            return Panel(content, title="Now Playing", border_style="blue", expand=expand)

        state = self._state.sync_state
        info = Table.grid(padding=(0, 1))
        info.add_column(style="dim", width=9)
        info.add_column()
        info.add_row("Video:", Text(self._state.video_url, style="bold white", overflow="ellipsis"))
        info.add_row(
            "Position:", Text(self._format_time(self._current_position()), style="cyan")
        )
        info.add_row("Sync:", Text(state.value, style=_STATE_STYLES.get(state, "white")))

        content = Table.grid()
        content.add_column()
        content.add_row(info)
        content.add_row("")

        space_label = "pause" if self._state.playing else "play"
        shortcuts = Text()
        shortcuts.append("←", style=self._shortcut_style("back"))
        shortcuts.append(" -10s  ", style="dim")
        shortcuts.append("<space>", style=self._shortcut_style("space"))
        shortcuts.append(f" {space_label}  ", style="dim")
        shortcuts.append("→", style=self._shortcut_style("forward"))
        shortcuts.append(" +10s  ", style="dim")
        shortcuts.append("u", style=self._shortcut_style("url"))
        shortcuts.append(" change video", style="dim")
        content.add_row(shortcuts)

        return Panel(content, title="Now Playing", border_style="blue", expand=expand)

    def _build_volume_panel(self, *, expand: bool = False) -> Panel:
        """Build the volume panel."""
        info = Table.grid(padding=(0, 2))
        info.add_column()
        info.add_column()

        info.add_row("Video:", Text(f"{self._state.user_volume}%", style="cyan"))
        if self._state.ducked:
            info.add_row(
                "Output:", Text(f"{self._state.output_volume}% [DUCKED]", style="yellow")
            )
        else:
            info.add_row("Output:", Text(f"{self._state.output_volume}%", style="cyan"))

        voice = Text()
        if not self._state.voice_available:
            voice.append("unavailable", style="dim")
        elif self._state.talking:
            voice.append("● talking", style="red bold")
            voice.append(f" {math.ceil(self._state.talk_remaining)}s", style="red")
        elif self._state.receiving_voice:
            voice.append("◀ incoming", style="yellow bold")
        else:
            voice.append("ready", style="green")
        info.add_row("Voice:", voice)

        content = Table.grid()
        content.add_column()
        content.add_row(info)
        content.add_row("")

        shortcuts = Text()
        shortcuts.append("↑", style=self._shortcut_style("up"))
        shortcuts.append(" up  ", style="dim")
        shortcuts.append("↓", style=self._shortcut_style("down"))
        shortcuts.append(" down  ", style="dim")
        shortcuts.append("t", style=self._shortcut_style("talk"))
        shortcuts.append(" talk", style="dim")
        content.add_row(shortcuts)

        return Panel(content, title="Volume", border_style="magenta", expand=expand)

    def _build_room_panel(self, *, expand: bool = False) -> Panel:
        """Build the room panel."""
        content = Table.grid(padding=(0, 1))
        content.add_column(style="dim", width=8)
        content.add_column()

        if self._state.connected and self._state.relay_url:
            status = Text("Connected", style="green bold")
        else:
            status = Text(self._state.status_message, style="yellow")
        content.add_row("Room:", Text(self._state.room or "-", style="bold white"))
        content.add_row("Status:", status)
        content.add_row("Relay:", Text(self._state.relay_url or "-", style="cyan"))

        members = Text()
        for index, member in enumerate(self._state.members):
            if index:
                members.append(", ", style="dim")
            if member == self._state.peer_id:
                members.append(f"{member} (you)", style="green")
            else:
                members.append(member, style="white")
        if not self._state.members:
            members.append("-", style="dim")
        content.add_row("Members:", members)
        if self._state.notice:
            content.add_row("", Text(self._state.notice, style="yellow"))

        return Panel(content, title="Room", border_style="yellow", expand=expand)

    def _build_url_input_panel(self) -> Panel:
        """Build the URL input panel."""
        content = Table.grid()
        content.add_column()
        content.add_row("")
        line = Text()
        line.append(" > ", style="bold cyan")
        line.append(self._state.url_input or "", style="bold white")
        line.append("_", style="blink")
        content.add_row(line)
        content.add_row("")

        shortcuts = Text()
        shortcuts.append("<enter>", style=self._shortcut_style("url-enter"))
        shortcuts.append(" apply  ", style="dim")
        shortcuts.append("<esc>", style=self._shortcut_style("url-cancel"))
        shortcuts.append(" cancel", style="dim")
        content.add_row(shortcuts)

        return Panel(content, title="Video URL", border_style="cyan")

    def _build_layout(self) -> Table:
        """Build the complete UI layout."""
        # Leave 1 char margin to prevent wrapping
        width = self._console.width - 1

        layout = Table.grid(expand=False)
        layout.add_column(width=width)

        if self._state.url_input is not None:
            layout.add_row(self._build_url_input_panel())
            return layout

        top_row = Table.grid(expand=True)
        top_row.add_column(ratio=2)
        top_row.add_column(ratio=1)
        top_row.add_row(
            self._build_now_playing_panel(expand=True),
            self._build_volume_panel(expand=True),
        )
        layout.add_row(top_row)
        layout.add_row(self._build_room_panel(expand=True))
        layout.add_row(self._build_status_line())

        return layout

    def _build_status_line(self) -> Table:
        """Build the status line at the bottom."""
        left = Text()
        left.append("  ")  # Align with panel content
        if self._state.connected and self._state.room:
            peers = len(self._state.members)
            left.append(f"In room {self._state.room} · {peers}/2 viewers", style="dim")
        else:
            left.append(self._state.status_message, style="dim yellow")

        right = Text()
        right.append("q", style=self._shortcut_style("quit"))
        right.append(" quit", style="dim")

        line = Table.grid(expand=True)
        line.add_column(ratio=1)
        line.add_column(justify="right")
        line.add_column(width=2)  # Right padding to align with panel interior
        line.add_row(left, right, "")
        return line

    def refresh(self) -> None:
        """Request a UI refresh."""
        if self._live is not None:
            self._live.refresh()

    def set_connected(self, relay_url: str, room: str, peer_id: str | None) -> None:
        """Update connection status to connected."""
        self._state.connected = True
        self._state.relay_url = relay_url
        self._state.room = room
        self._state.peer_id = peer_id
        self._state.status_message = f"Connected to {relay_url}"
        self._state.notice = None
        self.refresh()

    def set_disconnected(self, message: str = "Disconnected") -> None:
        """Update connection status to disconnected."""
        self._state.connected = False
        self._state.status_message = message
        self._state.members = []
        self.refresh()

    def set_members(self, members: list[str]) -> None:
        """Update the room roster, noting when the other viewer left."""
        previous = len(self._state.members)
        self._state.members = list(members)
        if len(members) < previous and len(members) < 2:
            self._state.notice = "The other viewer left the room"
        elif len(members) >= 2:
            self._state.notice = None
        self.refresh()

    def set_sync_state(self, state: SyncState) -> None:
        self._state.sync_state = state
        self.refresh()

    def set_playback(self, video_url: str, position: float, *, playing: bool) -> None:
        """Update the video URL and a fresh position sample."""
        self._state.video_url = video_url
        self._state.position = position
        self._state.position_updated_at = time.monotonic()
        self._state.playing = playing
        self.refresh()

    def set_volume(self, user_volume: int, output_volume: int, *, ducked: bool) -> None:
        self._state.user_volume = user_volume
        self._state.output_volume = output_volume
        self._state.ducked = ducked
        self.refresh()

    def set_voice(
        self,
        *,
        available: bool,
        talking: bool,
        receiving: bool,
        remaining: float = 0.0,
    ) -> None:
        self._state.voice_available = available
        self._state.talking = talking
        self._state.talk_remaining = remaining
        self._state.receiving_voice = receiving
        self.refresh()

    def set_notice(self, message: str | None) -> None:
        self._state.notice = message
        self.refresh()

    def show_url_input(self, initial: str = "") -> None:
        """Open the URL input panel."""
        self._state.url_input = initial
        self.refresh()

    def hide_url_input(self) -> None:
        self._state.url_input = None
        self.refresh()

    def is_url_input_visible(self) -> bool:
        """Check if the URL input panel is currently visible."""
        return self._state.url_input is not None

    def edit_url_input(self, key: str) -> None:
        """Apply a typed key or backspace to the URL being entered."""
        if self._state.url_input is None:
            return
        if key in ("\x7f", "\x08"):
            self._state.url_input = self._state.url_input[:-1]
        elif key.isprintable():
            self._state.url_input += key
        self.refresh()

    def start(self) -> None:
        """Start the live display."""
        self._console.clear()
        self._live = Live(
            _RefreshableLayout(self),
            console=self._console,
            refresh_per_second=4,
            screen=True,
        )
        self._live.start()
        self._running = True

    def stop(self) -> None:
        """Stop the live display."""
        self._running = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def __enter__(self) -> Self:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        """Context manager exit."""
        self.stop()
