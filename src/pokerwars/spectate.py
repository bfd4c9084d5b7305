"""Live terminal spectator for a run.

Tails runs/<run_id>/logs.jsonl and renders blinds, stacks, the board, recent
decisions with their reasoning and recent hand results.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field

from rich.align import Align
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pokerwars.storage import RunStorage

REFRESH_RATE = 0.5
BAR_WIDTH = 30
MAX_DECISIONS = 8
MAX_HANDS = 6

SEAT_COLORS = ["cyan", "magenta", "green", "yellow", "blue", "red", "bright_cyan",
               "bright_magenta", "bright_green", "bright_yellow"]
SUIT_SYMBOLS = {"h": "♥", "d": "♦", "c": "♣", "s": "♠"}
SUIT_COLORS = {"h": "red", "d": "blue", "c": "green", "s": "white"}


@dataclass
class DecisionLine:
    hand_number: int
    seat_index: int
    round: str
    action: str
    amount: int | None
    reasoning: str
    fallback: bool


@dataclass
class HandLine:
    hand_number: int
    winners: list[dict]
    pot_total: int


@dataclass
class SpectatorState:
    run_id: str
    hand_number: int = 0
    blinds: tuple[int, int] = (0, 0)
    button: int | None = None
    stacks: dict[int, int] = field(default_factory=dict)
    agents: dict[int, str] = field(default_factory=dict)
    total_chips: int = 0
    board: list[str] = field(default_factory=list)
    street: str = "preflop"
    pot: int = 0
    decisions: deque = field(default_factory=lambda: deque(maxlen=MAX_DECISIONS))
    hands: deque = field(default_factory=lambda: deque(maxlen=MAX_HANDS))
    eliminated: set[int] = field(default_factory=set)
    finished: bool = False
    winner: int | None = None
    winner_agent: str | None = None


def process_entry(state: SpectatorState, entry: dict) -> None:
    """Fold one log entry into the spectator state."""
    kind = entry.get("type")
    if kind == "hand_start":
        state.hand_number = entry["hand_number"]
        state.blinds = (entry["small_blind"], entry["big_blind"])
        state.button = entry.get("button")
        state.board = []
        state.street = "preflop"
        state.pot = 0
        for seat in entry.get("seats", []):
            state.stacks[seat["seat_index"]] = seat["stack"]
            state.agents[seat["seat_index"]] = seat["agent"]
        if not state.total_chips:
            state.total_chips = sum(state.stacks.values())
    elif kind == "decision":
        state.street = entry.get("round", state.street)
        state.board = list(entry.get("community_cards", []))
        state.pot = entry.get("pot", state.pot)
        decision = entry.get("decision") or {}
        state.decisions.append(DecisionLine(
            hand_number=entry["hand_number"],
            seat_index=entry["seat_index"],
            round=entry.get("round", ""),
            action=decision.get("action", "?"),
            amount=decision.get("amount"),
            reasoning=decision.get("reasoning", ""),
            fallback=entry.get("outcome") == "fallback",
        ))
    elif kind == "hand_end":
        state.pot = entry.get("pot_total", 0)
        state.hands.append(HandLine(entry["hand_number"], entry.get("winners", []), state.pot))
        for seat, stack in entry.get("stacks", {}).items():
            state.stacks[int(seat)] = stack
        state.eliminated.update(entry.get("eliminated", []))
    elif kind == "tournament_end":
        state.finished = True
        state.winner = entry.get("winner")
        state.winner_agent = entry.get("winner_agent")


def truncate_reasoning(text: str | None, max_len: int = 80) -> str:
    if not text:
        return ""
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line if len(line) <= max_len else line[: max_len - 3] + "..."


def format_cards(cards: list[str]) -> Text:
    if not cards:
        return Text("-- no cards --", style="dim italic")
    result = Text()
    for i, card in enumerate(cards):
        if i:
            result.append("  ")
        suit = card[-1].lower()
        result.append(f"{card[:-1].upper()}{SUIT_SYMBOLS.get(suit, suit)}",
                      style=f"bold {SUIT_COLORS.get(suit, 'white')}")
    return result


def make_chip_bar(chips: int, total: int, color: str) -> Text:
    fraction = max(0, min(1, chips / total)) if total > 0 else 0
    filled = int(fraction * BAR_WIDTH)
    bar = Text()
    bar.append("█" * filled, style=f"bold {color}")
    bar.append("░" * (BAR_WIDTH - filled), style="dim")
    bar.append(f" {chips}", style=f"bold {color}")
    return bar


def _seat_color(seat: int) -> str:
    return SEAT_COLORS[seat % len(SEAT_COLORS)]


def build_header(state: SpectatorState) -> Panel:
    title = Text()
    if state.finished:
        title.append("FINAL  ", style="bold red")
    else:
        title.append("LIVE  ", style="bold green")
    title.append("POKER WARS  ", style="bold white")
    title.append(state.run_id, style="dim")

    sub = Text()
    sub.append(f"Hand {state.hand_number}", style="bold")
    sub.append("  |  ", style="dim")
    sub.append(state.street.upper(), style="yellow")
    sub.append("  |  ", style="dim")
    sub.append(f"Pot: {state.pot}", style="bold yellow")
    sub.append("  |  ", style="dim")
    sub.append(f"Blinds: {state.blinds[0]}/{state.blinds[1]}", style="bold white")
    return Panel(Group(Align.center(title), Align.center(sub)),
                 border_style="red" if state.finished else "bright_white", padding=(0, 1))


def build_table_panel(state: SpectatorState) -> Panel:
    table = Table(show_header=False, show_edge=False, pad_edge=False, expand=True)
    table.add_column("seat", width=28, no_wrap=True)
    table.add_column("bar", ratio=1)
    for seat in sorted(state.stacks):
        label = Text()
        label.append("D " if seat == state.button else "  ", style="bold yellow")
        style = "dim strike" if seat in state.eliminated else f"bold {_seat_color(seat)}"
        label.append(f"{seat}: {state.agents.get(seat, '?')}"[:24], style=style)
        table.add_row(label, make_chip_bar(state.stacks[seat], state.total_chips, _seat_color(seat)))
    board = Text("\n  Board: ", style="dim")
    board.append_text(format_cards(state.board))
    return Panel(Group(table, board), title="[bold]Table[/bold]", border_style="green", padding=(0, 1))


def build_decisions(state: SpectatorState) -> Panel:
    lines: list[Text] = []
    for d in reversed(state.decisions):
        line = Text()
        line.append(f"#{d.hand_number:<4d}", style="dim")
        line.append(f"seat {d.seat_index} ", style=f"bold {_seat_color(d.seat_index)}")
        line.append(d.action + (f" {d.amount}" if d.amount is not None else ""), style="bold")
        if d.fallback:
            line.append(" [fallback]", style="bold red")
        reasoning = truncate_reasoning(d.reasoning)
        if reasoning:
            line.append(f"  {reasoning}", style="italic")
        lines.append(line)
    if not lines:
        lines.append(Text("  Waiting for first action...", style="dim italic"))
    return Panel(Group(*lines), title="[bold]Decisions[/bold]", border_style="blue", padding=(0, 1))


def build_hand_history(state: SpectatorState) -> Panel:
    lines: list[Text] = []
    for hand in reversed(state.hands):
        line = Text()
        line.append(f"Hand {hand.hand_number:>3d}  ", style="bold")
        for w in hand.winners:
            line.append(f"seat {w['seat_index']}", style=f"bold {_seat_color(w['seat_index'])}")
            line.append(f" +{w.get('amount_won', 0)}", style="bold green")
            if w.get("description") or w.get("hand_rank"):
                line.append(f" ({w.get('description') or w.get('hand_rank')})", style="dim")
            line.append("  ")
        lines.append(line)
    if not lines:
        lines.append(Text("  No completed hands yet", style="dim italic"))
    return Panel(Group(*lines), title="[bold]Recent Hands[/bold]", border_style="yellow", padding=(0, 1))


def build_footer(state: SpectatorState) -> Text:
    if state.finished:
        if state.winner is None:
            return Text("Tournament complete, no winner", style="bold red")
        return Text(f"Winner: seat {state.winner} ({state.winner_agent})", style="bold green")
    return Text("Ctrl-C to stop watching", style="dim")


def render(state: SpectatorState) -> Group:
    return Group(
        build_header(state),
        build_table_panel(state),
        build_decisions(state),
        build_hand_history(state),
        build_footer(state),
    )


def watch(storage: RunStorage, run_id: str, console: Console | None = None) -> SpectatorState:
    """Follow a run until it finishes or the user interrupts."""
    console = console or Console()
    state = SpectatorState(run_id=run_id)
    with Live(render(state), console=console, refresh_per_second=4, screen=True) as live:
        try:
            for entries, _offset in storage.follow_log(run_id, poll_s=REFRESH_RATE):
                for entry in entries:
                    process_entry(state, entry)
                live.update(render(state))
                if state.finished:
                    time.sleep(2)
                    break
        except KeyboardInterrupt:
            pass
    console.print(build_footer(state))
    return state
