"""Tests for the No-Limit Hold'em table state machine."""

import pytest

from pokerwars.holdem.evaluator import HandRank
from pokerwars.holdem.table import HoldemTable, Pot, TableStateError
from pokerwars.models import Action

from conftest import StackedTable

# Seats 0-2, button 0: seat 0 gets AhAs, seat 1 7c2d, seat 2 KhKd.
# Board 9s 8d 3c 4h Jc.
SCENARIO_DEAL = ["7c", "Kh", "Ah", "2d", "Kd", "As", "5s", "9s", "8d", "3c", "6s", "4h", "5h", "Jc"]


def _table(stacks, blinds=(10, 20), table=None):
    table = table or HoldemTable()
    for seat, stack in stacks.items():
        table.sit_down(seat, stack)
    table.set_forced_bets(*blinds)
    return table


def _total_chips(table):
    return sum(c.total_chips for c in table.seats().values())


class TestSeating:
    def test_seat_out_of_range(self):
        with pytest.raises(TableStateError):
            HoldemTable(num_seats=10).sit_down(10, 100)

    def test_seat_taken(self):
        table = _table({0: 100})
        with pytest.raises(TableStateError):
            table.sit_down(0, 100)

    def test_stand_up_during_hand(self):
        table = _table({0: 100, 1: 100})
        table.start_hand(button=0, deck_seed=1)
        with pytest.raises(TableStateError):
            table.stand_up(1)

    def test_need_two_funded_seats(self):
        table = _table({0: 100})
        with pytest.raises(TableStateError):
            table.start_hand(button=0)

    def test_blinds_must_be_set(self):
        table = HoldemTable()
        table.sit_down(0, 100)
        table.sit_down(1, 100)
        with pytest.raises(TableStateError):
            table.start_hand()


class TestBlindsAndOrder:
    def test_heads_up_button_posts_small_blind(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=7)
        chips = table.seats()
        assert chips[0].bet == 10 and chips[0].stack == 490
        assert chips[1].bet == 20 and chips[1].stack == 480
        # Button acts first preflop heads-up
        assert table.player_to_act() == 0

    def test_three_handed_blinds_and_first_to_act(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=7)
        chips = table.seats()
        assert chips[1].bet == 10
        assert chips[2].bet == 20
        assert table.player_to_act() == 0

    def test_button_defaults_then_rotates(self):
        table = _table({2: 500, 5: 500, 7: 500})
        table.start_hand(deck_seed=1)
        assert table.button() == 2
        table.action_taken(Action.FOLD)
        table.action_taken(Action.FOLD)
        table.end_betting_round()
        table.start_hand(deck_seed=2)
        assert table.button() == 5

    def test_button_must_be_seated(self):
        table = _table({0: 500, 1: 500})
        with pytest.raises(TableStateError):
            table.start_hand(button=4)

    def test_each_player_dealt_two_cards(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=3)
        hole = table.hole_cards()
        assert all(len(c) == 2 for c in hole.values())
        dealt = [card for pair in hole.values() for card in pair]
        assert len(set(dealt)) == 6

    def test_same_seed_same_cards(self):
        a = _table({0: 500, 1: 500})
        b = _table({0: 500, 1: 500})
        a.start_hand(button=0, deck_seed=99)
        b.start_hand(button=0, deck_seed=99)
        assert a.hole_cards() == b.hole_cards()


class TestLegalActions:
    def test_facing_big_blind(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=1)
        legal = table.legal_actions()
        assert legal.actions == (Action.FOLD, Action.CALL, Action.RAISE)
        assert legal.min_amount == 40
        assert legal.max_amount == 500

    def test_big_blind_option_is_check(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.CALL)
        table.action_taken(Action.CALL)
        assert table.player_to_act() == 2
        legal = table.legal_actions()
        assert legal.actions == (Action.FOLD, Action.CHECK, Action.RAISE)

    def test_unopened_postflop_round_offers_bet(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.CALL)
        table.action_taken(Action.CHECK)
        table.end_betting_round()
        assert table.round_of_betting() == "flop"
        assert len(table.community_cards()) == 3
        # Postflop action opens left of the button
        assert table.player_to_act() == 1
        legal = table.legal_actions()
        assert legal.actions == (Action.FOLD, Action.CHECK, Action.BET)
        assert legal.min_amount == 20
        assert legal.max_amount == 480

    def test_short_stack_cannot_raise(self):
        table = _table({0: 15, 1: 500})
        table.start_hand(button=1, deck_seed=1)
        # Seat 1 posts SB 10 on the button, seat 0 posts 15 of its 20 BB all-in
        assert table.player_to_act() == 1
        legal = table.legal_actions()
        assert Action.RAISE not in legal.actions

    def test_min_raise_tracks_last_increment(self):
        table = _table({0: 1000, 1: 1000, 2: 1000})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.RAISE, 100)  # raise by 80
        legal = table.legal_actions()
        assert legal.min_amount == 180

    def test_short_all_in_raise_does_not_reopen_raising(self):
        table = _table({0: 500, 1: 500, 2: 130})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.RAISE, 100)
        table.action_taken(Action.CALL)
        # Min raise is 180, seat 2 can only shove 130
        assert table.player_to_act() == 2
        assert table.legal_actions().min_amount == 130
        table.action_taken(Action.RAISE, 130)

        assert table.player_to_act() == 0
        legal = table.legal_actions()
        assert legal.actions == (Action.FOLD, Action.CALL)
        assert legal.min_amount is None
        with pytest.raises(TableStateError):
            table.action_taken(Action.RAISE, 230)
        table.action_taken(Action.CALL)

        assert table.player_to_act() == 1
        assert table.legal_actions().actions == (Action.FOLD, Action.CALL)
        table.action_taken(Action.CALL)
        assert not table.is_betting_round_in_progress()
        assert {s: c.bet for s, c in table.seats().items()} == {0: 130, 1: 130, 2: 130}

    def test_full_raise_reopens_raising(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.RAISE, 100)
        table.action_taken(Action.CALL)
        table.action_taken(Action.RAISE, 200)
        assert table.player_to_act() == 0
        legal = table.legal_actions()
        assert Action.RAISE in legal.actions
        assert legal.min_amount == 300

    def test_illegal_action_rejected(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=1)
        with pytest.raises(TableStateError):
            table.action_taken(Action.CHECK)

    def test_amount_out_of_bounds_rejected(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=1)
        with pytest.raises(TableStateError):
            table.action_taken(Action.RAISE, 25)
        with pytest.raises(TableStateError):
            table.action_taken(Action.RAISE, 600)


class TestReadableWindows:
    def test_reads_before_any_hand(self):
        table = _table({0: 500, 1: 500})
        for read in (table.pots, table.hole_cards, table.community_cards,
                     table.hand_players, table.button, table.round_of_betting):
            with pytest.raises(TableStateError):
                read()
        with pytest.raises(TableStateError):
            table.player_to_act()
        with pytest.raises(TableStateError):
            table.winners()

    def test_reads_after_fold_out(self):
        table = _table({0: 500, 1: 500, 2: 500})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.FOLD)
        table.action_taken(Action.FOLD)
        assert not table.is_betting_round_in_progress()
        assert table.is_hand_in_progress()
        table.end_betting_round()
        assert not table.is_hand_in_progress()
        with pytest.raises(TableStateError):
            table.pots()
        with pytest.raises(TableStateError):
            table.winners()
        # Stacks stay readable
        assert table.seats()[2].stack == 510

    def test_winners_readable_until_next_deal(self):
        table = _table({0: 500, 1: 500}, table=StackedTable(SCENARIO_DEAL))
        table.start_hand(button=0)
        table.action_taken(Action.CALL)
        table.action_taken(Action.CHECK)
        for _ in range(3):
            table.end_betting_round()
            table.action_taken(Action.CHECK)
            table.action_taken(Action.CHECK)
        table.end_betting_round()
        assert table.are_betting_rounds_completed()
        table.showdown()
        assert table.winners()
        table.start_hand()
        with pytest.raises(TableStateError):
            table.winners()

    def test_end_round_while_in_progress_rejected(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=1)
        with pytest.raises(TableStateError):
            table.end_betting_round()

    def test_showdown_before_river_rejected(self):
        table = _table({0: 500, 1: 500})
        table.start_hand(button=0, deck_seed=1)
        table.action_taken(Action.CALL)
        table.action_taken(Action.CHECK)
        with pytest.raises(TableStateError):
            table.showdown()


class TestFullHand:
    def _play_scenario(self):
        table = _table({0: 500, 1: 500, 2: 500}, table=StackedTable(SCENARIO_DEAL))
        table.start_hand(button=0)
        table.action_taken(Action.RAISE, 60)
        table.action_taken(Action.CALL)
        table.action_taken(Action.FOLD)
        while not table.are_betting_rounds_completed():
            if table.is_betting_round_in_progress():
                table.action_taken(Action.CHECK)
            else:
                table.end_betting_round()
        return table

    def test_stacked_deal(self):
        table = StackedTable(SCENARIO_DEAL)
        _table({0: 500, 1: 500, 2: 500}, table=table)
        table.start_hand(button=0)
        assert table.hole_cards() == {0: ["Ah", "As"], 1: ["7c", "2d"], 2: ["Kh", "Kd"]}

    def test_showdown_scenario(self):
        table = self._play_scenario()
        assert table.community_cards() == ["9s", "8d", "3c", "4h", "Jc"]
        assert table.pots() == [Pot(140, [0, 1])]
        assert table.hand_players() == [0, 1]

        table.showdown()
        winners = table.winners()
        assert len(winners) == 1
        (winner,) = winners[0]
        assert winner.seat_index == 0
        assert winner.rank == HandRank.PAIR
        assert winner.description == "Pair, Aces"
        stacks = {s: c.stack for s, c in table.seats().items()}
        assert stacks == {0: 580, 1: 440, 2: 480}

    def test_all_in_side_pot(self):
        table = _table({0: 100, 1: 300, 2: 300})
        table.start_hand(button=0, deck_seed=5)
        table.action_taken(Action.RAISE, 100)  # seat 0 all-in
        table.action_taken(Action.CALL)
        table.action_taken(Action.CALL)
        table.end_betting_round()
        # Seat 0 is all-in, so seat 1 opens the flop
        assert table.player_to_act() == 1
        table.action_taken(Action.BET, 50)
        table.action_taken(Action.CALL)
        assert table.pots() == [Pot(300, [0, 1, 2]), Pot(100, [1, 2])]

    def test_all_in_runout_conserves_chips(self):
        table = _table({0: 300, 1: 700})
        table.start_hand(button=0, deck_seed=11)
        table.action_taken(Action.RAISE, 300)
        table.action_taken(Action.CALL)
        rounds = 0
        while not table.are_betting_rounds_completed():
            assert not table.is_betting_round_in_progress()
            table.end_betting_round()
            rounds += 1
        assert rounds == 4
        assert len(table.community_cards()) == 5
        table.showdown()
        assert _total_chips(table) == 1000
        assert not table.is_hand_in_progress()
