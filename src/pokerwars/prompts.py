"""Prompt rendering for poker agents.

The system prompt sets the table (seat, stack, position, blinds, rules,
tools and reply format); the decision prompt describes the spot the seat is
facing. Mock strategies parse the decision prompt, so its line formats are
part of the contract with pokerwars.strategies.
"""

from __future__ import annotations

import json

from pokerwars.models import DecisionContext

SUIT_SYMBOLS = {"h": "♥", "d": "♦", "c": "♣", "s": "♠"}

TOOL_DESCRIPTIONS = {
    "get_previous_hands": (
        'Recent hand history: winners, showdown hands and bets/raises. '
        'Arguments: {"limit": 1-20, default 5}'
    ),
    "get_standings": "Current chip standings of every player still in. No arguments.",
    "get_my_hand_actions": "The actions you have taken so far this hand. No arguments.",
}


def format_card(card: str) -> str:
    return f"{card[0]}{SUIT_SYMBOLS.get(card[1].lower(), card[1])}"


def format_cards(cards) -> str:
    if not cards:
        return "None"
    return " ".join(format_card(c) for c in cards)


def position_name(position: int, seat_count: int) -> str:
    """Name a seat by its clockwise offset from the button."""
    if seat_count == 2:
        return "Button / Small Blind (BTN)" if position == 0 else "Big Blind (BB)"
    if position == 0:
        return "Button (BTN)"
    if position == 1:
        return "Small Blind (SB)"
    if position == 2:
        return "Big Blind (BB)"
    if position == seat_count - 1:
        return "Cut-off (CO)"
    return f"Middle Position (MP+{position - 2})"


def build_system_prompt(
    context: DecisionContext,
    raise_cap: int,
    raise_cap_reached: bool = False,
    tools_enabled: bool = True,
) -> str:
    lines = [
        "You are a professional poker player. Make decisions quickly and confidently.",
        "",
        "## Your Seat",
        f"- Seat {context.seat_index} | Stack: {context.stack} chips | "
        f"Position: {position_name(context.position, context.seat_count)}",
        f"- Blinds: {context.small_blind}/{context.big_blind}",
        "",
        "## Rules",
        "- No-Limit Texas Hold'em tournament",
        f"- {raise_cap}-raise cap per betting round: after {raise_cap} bets/raises you must call or fold",
        "- Last player standing wins",
    ]
    if raise_cap_reached:
        lines += ["", "RAISE CAP REACHED: you must call, check or fold. Raising is NOT allowed this round."]

    if tools_enabled:
        lines += ["", "## Tools Available"]
        lines += [f"- {name}: {desc}" for name, desc in TOOL_DESCRIPTIONS.items()]
        lines += [
            "To use a tool, reply with ONLY a JSON object:",
            '{"tool": "<tool name>", "arguments": {...}}',
            "The result comes back in the next message.",
        ]

    lines += [
        "",
        "## Decision Format",
        "When you decide, reply with ONLY a JSON object:",
        '{"action": "fold|check|call|bet|raise", "amount": <int or null>, "reasoning": "<brief explanation>"}',
        "amount is the total you are betting to this round, required for bet/raise.",
    ]
    return "\n".join(lines)


def build_decision_prompt(context: DecisionContext) -> str:
    legal = context.legal
    lines = [
        f"## Hand {context.hand_number}: Current Situation",
        "",
        f"Your Cards: {format_cards(context.hole_cards)}",
        f"Community Cards: {format_cards(context.community_cards)} ({context.round})",
        f"Pot: {context.pot} chips",
        f"Your Stack: {context.stack} chips",
        f"Your Bet: {context.bet} chips",
        f"To Call: {context.to_call} chips",
        "",
        "Opponents in Hand:",
    ]
    active = [o for o in context.opponents if o.active]
    if active:
        lines += [f"- Seat {o.seat_index}: {o.stack} chips, bet {o.bet}" for o in active]
    else:
        lines.append("- none")
    lines += ["", f"Legal Actions: {', '.join(a.value for a in legal.actions)}"]
    if legal.min_amount is not None:
        lines.append(f"- Minimum bet/raise: {legal.min_amount}")
    if legal.max_amount is not None:
        lines.append(f"- Maximum bet/raise: {legal.max_amount} (all-in)")
    lines += ["", "Use the tools if you need more context, then make your decision."]
    return "\n".join(lines)


def build_tool_result_message(name: str, output) -> str:
    return f"Tool result for {name}:\n{json.dumps(output, default=str)}"


FINAL_STEP_NOTICE = "Tool budget exhausted. Reply now with your decision JSON only."
