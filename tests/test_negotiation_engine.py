"""Tests for the pure negotiation transitions (no database)."""

import random
import uuid
from datetime import date

from coordination.db.enums import (
    CarryOverReason,
    NegotiationResponse,
    NegotiationType,
    ResolutionType,
    YieldOption,
)
from coordination.services import negotiation_engine as engine
from coordination.services.negotiation_engine import DatedBlock, MemberState, NegotiationState
from coordination.utils.timeblocks import TimeBlock, parse_hhmm

MONDAY = date(2026, 10, 19)
A = uuid.UUID(int=1)
B = uuid.UUID(int=2)
C = uuid.UUID(int=3)


def block(start: str, end: str, day: date = MONDAY) -> DatedBlock:
    return DatedBlock(day, TimeBlock(parse_hhmm(start), parse_hhmm(end)))


def state(kind, window, *members) -> NegotiationState:
    return NegotiationState(uuid.uuid4(), kind, window, tuple(members))


def member(user_id, response=NegotiationResponse.PENDING, required_slots=2, **kwargs) -> MemberState:
    return MemberState(user_id, required_slots, response=response, **kwargs)


class PickLast:
    def choice(self, seq):
        return seq[-1]


# =============================================================================
# full_conflict
# =============================================================================

class TestFullConflict:
    window = block("09:00", "10:00")

    def test_not_ready_until_enough_answers(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.CLAIM),
            member(B),
            member(C),
        )
        assert engine.is_ready(s) is False

    def test_yield_and_pending_is_ready(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.YIELD, yield_option=YieldOption.CARRY_OVER),
            member(B),
        )
        assert engine.is_ready(s) is True

        outcome = engine.resolve(s)
        assert outcome.resolved
        assert outcome.winner == B
        assert outcome.assignments[0].where == self.window
        assert [(m.user_id, m.response) for m in outcome.member_updates] == [
            (B, NegotiationResponse.CLAIM)
        ]

    def test_yield_and_claim(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.YIELD, yield_option=YieldOption.CARRY_OVER),
            member(B, NegotiationResponse.CLAIM, required_slots=1),
        )
        outcome = engine.resolve(s)

        assert outcome.resolution_type == ResolutionType.YIELDED
        assert outcome.winner == B
        # Claimant without a chosen slot takes the front of the window
        assert outcome.assignments[0].where == block("09:00", "09:30")
        assert outcome.carry_overs == [
            engine.CarryOverCredit(A, 60, CarryOverReason.NEGOTIATION_YIELD)
        ]

    def test_yield_to_alternative_time_assigns_instead_of_crediting(self):
        alternative = block("14:00", "15:00")
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(
                A,
                NegotiationResponse.YIELD,
                yield_option=YieldOption.ALTERNATIVE_TIME,
                alternative_slots=(alternative,),
            ),
            member(B, NegotiationResponse.CLAIM),
        )
        outcome = engine.resolve(s)

        assert engine.Assignment(A, alternative) in outcome.assignments
        assert outcome.carry_overs == []

    def test_everyone_yields(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.YIELD, required_slots=1),
            member(B, NegotiationResponse.YIELD, required_slots=1),
        )
        outcome = engine.resolve(s)

        assert outcome.winner is None
        assert outcome.assignments == []
        assert {(c.user_id, c.minutes) for c in outcome.carry_overs} == {(A, 60), (B, 60)}

    def test_everyone_yields_with_an_alternative_time(self):
        alternative = block("14:00", "15:00")
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.YIELD, yield_option=YieldOption.CARRY_OVER),
            member(
                B,
                NegotiationResponse.YIELD,
                yield_option=YieldOption.ALTERNATIVE_TIME,
                alternative_slots=(alternative,),
            ),
        )
        outcome = engine.resolve(s)

        assert outcome.assignments == [engine.Assignment(B, alternative)]
        assert outcome.carry_overs == [
            engine.CarryOverCredit(A, 60, CarryOverReason.NEGOTIATION_YIELD)
        ]

    def test_multiple_claims_draw_a_winner(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.CLAIM),
            member(B, NegotiationResponse.CLAIM),
        )
        outcome = engine.resolve(s, rng=PickLast())

        assert outcome.resolution_type == ResolutionType.RANDOM
        assert outcome.winner == B
        assert outcome.assignments == [engine.Assignment(B, self.window)]
        assert outcome.carry_overs == [
            engine.CarryOverCredit(A, 60, CarryOverReason.NEGOTIATION_RANDOM_LOSS)
        ]

    def test_random_winner_is_always_a_claimant(self):
        s = state(
            NegotiationType.FULL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.CLAIM),
            member(B, NegotiationResponse.CLAIM),
            member(C, NegotiationResponse.YIELD),
        )
        rng = random.Random(0)
        for _ in range(20):
            outcome = engine.resolve(s, rng=rng)
            assert outcome.winner in (A, B)
            credited = {c.user_id for c in outcome.carry_overs}
            assert C in credited
            assert outcome.winner not in credited


# =============================================================================
# partial_conflict
# =============================================================================

class TestPartialConflict:
    window = block("09:00", "11:00")

    def test_split(self):
        s = state(
            NegotiationType.PARTIAL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.SPLIT_FIRST),
            member(B, NegotiationResponse.SPLIT_SECOND),
        )
        assert engine.is_ready(s)
        outcome = engine.resolve(s)

        assert outcome.resolution_type == ResolutionType.SPLIT
        assert outcome.assignments == [
            engine.Assignment(A, block("09:00", "10:00")),
            engine.Assignment(B, block("10:00", "11:00")),
        ]

    def test_same_half_escalates(self):
        s = state(
            NegotiationType.PARTIAL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.SPLIT_FIRST, required_slots=1),
            member(B, NegotiationResponse.SPLIT_FIRST, required_slots=2),
        )
        outcome = engine.resolve(s)

        assert not outcome.resolved
        assert outcome.new_type == NegotiationType.FULL_CONFLICT
        assert outcome.new_window == block("09:00", "10:00")
        chosen = {m.user_id: m.chosen_slot for m in outcome.member_updates}
        assert chosen == {A: block("09:00", "09:30"), B: block("09:00", "10:00")}
        assert all(not m.has_responded for m in outcome.member_updates)

    def test_same_back_half_escalates(self):
        s = state(
            NegotiationType.PARTIAL_CONFLICT,
            self.window,
            member(A, NegotiationResponse.SPLIT_SECOND),
            member(B, NegotiationResponse.SPLIT_SECOND),
        )
        outcome = engine.resolve(s)
        assert outcome.new_window == block("10:00", "11:00")


# =============================================================================
# time_slot_choice
# =============================================================================

class TestTimeSlotChoice:
    window = block("09:00", "12:00")

    def test_clean_pick_is_provisional(self):
        s = state(NegotiationType.TIME_SLOT_CHOICE, self.window, member(A), member(B))
        pick = block("09:00", "10:00")

        outcome = engine.choose_slot(s, A, pick)

        assert not outcome.escalated
        assert outcome.assignments == [engine.Assignment(A, pick, provisional=True)]
        assert outcome.member_updates[0].response == NegotiationResponse.CHOOSE_SLOT

    def test_colliding_pick_escalates(self):
        s = state(
            NegotiationType.TIME_SLOT_CHOICE,
            self.window,
            member(A, NegotiationResponse.CHOOSE_SLOT, chosen_slot=block("09:00", "10:00")),
            member(B),
        )
        pick = block("09:30", "10:30")

        outcome = engine.choose_slot(s, B, pick)

        assert outcome.new_type == NegotiationType.FULL_CONFLICT
        assert outcome.new_window == pick
        assert outcome.clear_provisional_in == pick
        assert outcome.assignments == []

    def test_separate_picks_resolve(self):
        s = state(
            NegotiationType.TIME_SLOT_CHOICE,
            self.window,
            member(A, NegotiationResponse.CHOOSE_SLOT, chosen_slot=block("09:00", "10:00")),
            member(B, NegotiationResponse.CHOOSE_SLOT, chosen_slot=block("10:00", "11:00")),
        )
        assert engine.is_ready(s)
        outcome = engine.resolve(s)

        assert outcome.resolved
        assert outcome.resolution_type == ResolutionType.TIME_SLOT_CHOICE


class TestStateHelpers:
    def test_with_response_keeps_previous_pick(self):
        pick = block("09:00", "10:00")
        s = state(
            NegotiationType.FULL_CONFLICT, pick, member(A, chosen_slot=pick), member(B)
        )
        updated = engine.with_response(s, A, NegotiationResponse.CLAIM)

        assert updated.member(A).response == NegotiationResponse.CLAIM
        assert updated.member(A).chosen_slot == pick
        assert updated.member(B) == s.member(B)

    def test_dated_block_json(self):
        data = block("09:00", "10:30").to_json()
        assert data == {"date": "2026-10-19", "start_time": "09:00", "end_time": "10:30"}
        assert DatedBlock.from_json(data) == block("09:00", "10:30")
