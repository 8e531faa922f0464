"""Negotiation Engine: pure transitions over negotiation snapshots.

Nothing here touches the database. The service builds a NegotiationState,
asks for an Outcome and applies it in one commit.

Resolution table:

    full_conflict     N-1 yield + 1 claim (or last member pending) → claimant
                      gets their chosen slot or the front of the window
                      all yield → each yielder carries over the whole window
                      or moves to their alternative time
                      2+ claims → uniform random winner, losers carry over
    partial_conflict  split_first + split_second → front/back split
                      same half twice → escalate to full_conflict on that half
    time_slot_choice  picks that never overlap → all confirmed
                      overlapping pick → escalate to full_conflict on the pick
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from datetime import date
from uuid import UUID

from coordination.db.enums import (
    CarryOverReason,
    NegotiationResponse,
    NegotiationType,
    ResolutionType,
    YieldOption,
)
from coordination.utils.timeblocks import SLOT_MINUTES, TimeBlock, format_hhmm, parse_hhmm


@dataclass(frozen=True)
class DatedBlock:
    slot_date: date
    block: TimeBlock

    def overlaps(self, other: "DatedBlock") -> bool:
        return self.slot_date == other.slot_date and self.block.overlaps(other.block)

    def to_json(self) -> dict:
        return {
            "date": self.slot_date.isoformat(),
            "start_time": format_hhmm(self.block.start),
            "end_time": format_hhmm(self.block.end),
        }

    @classmethod
    def from_json(cls, data: dict) -> "DatedBlock":
        return cls(
            date.fromisoformat(data["date"]),
            TimeBlock(parse_hhmm(data["start_time"]), parse_hhmm(data["end_time"])),
        )

    def label(self) -> str:
        return f"{self.slot_date.isoformat()} {self.block.label()}"


@dataclass(frozen=True)
class MemberState:
    user_id: UUID
    required_slots: int
    response: NegotiationResponse = NegotiationResponse.PENDING
    yield_option: YieldOption | None = None
    alternative_slots: tuple[DatedBlock, ...] = ()
    chosen_slot: DatedBlock | None = None

    @property
    def required_minutes(self) -> int:
        return self.required_slots * SLOT_MINUTES

    @property
    def has_responded(self) -> bool:
        return self.response != NegotiationResponse.PENDING

    def reset(self, chosen_slot: DatedBlock | None = None) -> "MemberState":
        return replace(
            self,
            response=NegotiationResponse.PENDING,
            yield_option=None,
            alternative_slots=(),
            chosen_slot=chosen_slot,
        )


@dataclass(frozen=True)
class NegotiationState:
    negotiation_id: UUID
    type: NegotiationType
    window: DatedBlock
    members: tuple[MemberState, ...]

    def member(self, user_id: UUID) -> MemberState:
        for m in self.members:
            if m.user_id == user_id:
                return m
        raise KeyError(user_id)

    def count(self, response: NegotiationResponse) -> int:
        return sum(1 for m in self.members if m.response == response)


@dataclass(frozen=True)
class Assignment:
    user_id: UUID
    where: DatedBlock
    provisional: bool = False


@dataclass(frozen=True)
class CarryOverCredit:
    user_id: UUID
    minutes: int
    reason: CarryOverReason


@dataclass
class Outcome:
    """Everything a transition wants done, applied by the service in one commit."""

    resolved: bool = False
    resolution_type: ResolutionType | None = None
    winner: UUID | None = None
    new_type: NegotiationType | None = None
    new_window: DatedBlock | None = None
    assignments: list[Assignment] = field(default_factory=list)
    carry_overs: list[CarryOverCredit] = field(default_factory=list)
    member_updates: list[MemberState] = field(default_factory=list)
    # Provisional picks of negotiation members overlapping this are removed
    clear_provisional_in: DatedBlock | None = None
    messages: list[str] = field(default_factory=list)

    @property
    def escalated(self) -> bool:
        return self.new_type is not None


# =============================================================================
# Windows
# =============================================================================

def front_part(window: DatedBlock, minutes: int) -> DatedBlock:
    end = min(window.block.end, window.block.start + minutes)
    return DatedBlock(window.slot_date, TimeBlock(window.block.start, end))


def back_part(window: DatedBlock, minutes: int) -> DatedBlock:
    start = max(window.block.start, window.block.end - minutes)
    return DatedBlock(window.slot_date, TimeBlock(start, window.block.end))


# =============================================================================
# Readiness
# =============================================================================

def is_ready(state: NegotiationState) -> bool:
    """Whether the current answers are enough to resolve."""
    n = len(state.members)
    responded = sum(1 for m in state.members if m.has_responded)
    if responded == n:
        return True
    if state.type == NegotiationType.FULL_CONFLICT:
        yielded = state.count(NegotiationResponse.YIELD)
        claimed = state.count(NegotiationResponse.CLAIM)
        pending = state.count(NegotiationResponse.PENDING)
        return yielded == n - 1 and (claimed == 1 or pending == 1)
    return False


def resolve(state: NegotiationState, rng: random.Random | None = None) -> Outcome:
    """Resolve a ready negotiation according to its type."""
    if state.type == NegotiationType.FULL_CONFLICT:
        return _resolve_full_conflict(state, rng or random.Random())
    if state.type == NegotiationType.PARTIAL_CONFLICT:
        return _resolve_partial_conflict(state)
    return _resolve_time_slot_choice(state)


# =============================================================================
# full_conflict
# =============================================================================

def _yield_outcome(outcome: Outcome, yielders: list[MemberState], minutes_for) -> None:
    for m in yielders:
        if m.yield_option == YieldOption.ALTERNATIVE_TIME and m.alternative_slots:
            for alternative in m.alternative_slots:
                outcome.assignments.append(Assignment(m.user_id, alternative))
        else:
            outcome.carry_overs.append(
                CarryOverCredit(m.user_id, minutes_for(m), CarryOverReason.NEGOTIATION_YIELD)
            )


def _claim_target(state: NegotiationState, member: MemberState) -> DatedBlock:
    return member.chosen_slot or front_part(state.window, member.required_minutes)


def _resolve_full_conflict(state: NegotiationState, rng: random.Random) -> Outcome:
    window_minutes = state.window.block.duration
    yielders = [m for m in state.members if m.response == NegotiationResponse.YIELD]
    # A still-pending member at this point is the last one standing
    claimants = [m for m in state.members if m.response != NegotiationResponse.YIELD]

    outcome = Outcome(resolved=True)

    if not claimants:
        outcome.resolution_type = ResolutionType.YIELDED
        _yield_outcome(outcome, yielders, lambda m: window_minutes)
        outcome.messages.append("Everyone yielded; nobody takes the window.")
        return outcome

    if len(claimants) == 1:
        winner = claimants[0]
        if winner.response == NegotiationResponse.PENDING:
            outcome.member_updates.append(replace(winner, response=NegotiationResponse.CLAIM))
        outcome.resolution_type = ResolutionType.YIELDED
        outcome.winner = winner.user_id
        target = _claim_target(state, winner)
        outcome.assignments.append(Assignment(winner.user_id, target))
        _yield_outcome(outcome, yielders, lambda m: m.required_minutes)
        outcome.messages.append(f"Resolved by yielding: {target.label()} goes to the claimant.")
        return outcome

    winner = rng.choice(claimants)
    outcome.resolution_type = ResolutionType.RANDOM
    outcome.winner = winner.user_id
    target = _claim_target(state, winner)
    outcome.assignments.append(Assignment(winner.user_id, target))
    for loser in claimants:
        if loser.user_id == winner.user_id:
            continue
        outcome.carry_overs.append(
            CarryOverCredit(loser.user_id, window_minutes, CarryOverReason.NEGOTIATION_RANDOM_LOSS)
        )
    _yield_outcome(outcome, yielders, lambda m: m.required_minutes)
    outcome.messages.append(
        f"{len(claimants)} members claimed; {target.label()} was drawn at random."
    )
    return outcome


# =============================================================================
# partial_conflict
# =============================================================================

def _resolve_partial_conflict(state: NegotiationState) -> Outcome:
    first = [m for m in state.members if m.response == NegotiationResponse.SPLIT_FIRST]
    second = [m for m in state.members if m.response == NegotiationResponse.SPLIT_SECOND]

    if len(first) == 1 and len(second) == 1:
        front = front_part(state.window, first[0].required_minutes)
        back_start = max(front.block.end, state.window.block.end - second[0].required_minutes)
        back = DatedBlock(state.window.slot_date, TimeBlock(back_start, state.window.block.end))
        outcome = Outcome(resolved=True, resolution_type=ResolutionType.SPLIT)
        outcome.assignments.append(Assignment(first[0].user_id, front))
        if back.block.duration > 0:
            outcome.assignments.append(Assignment(second[0].user_id, back))
        outcome.messages.append(f"Split: {front.label()} and {back.label()}.")
        return outcome

    # Both picked the same half: that half becomes the contested window
    longest = max(m.required_minutes for m in state.members)
    if first:
        half = front_part(state.window, longest)
        chosen = {m.user_id: front_part(state.window, m.required_minutes) for m in state.members}
    else:
        half = back_part(state.window, longest)
        chosen = {m.user_id: back_part(state.window, m.required_minutes) for m in state.members}

    outcome = Outcome(new_type=NegotiationType.FULL_CONFLICT, new_window=half)
    outcome.member_updates = [m.reset(chosen_slot=chosen[m.user_id]) for m in state.members]
    outcome.messages.append(
        f"Both members chose the same half; now a full conflict over {half.label()}."
    )
    return outcome


# =============================================================================
# time_slot_choice
# =============================================================================

def choose_slot(state: NegotiationState, user_id: UUID, chosen: DatedBlock) -> Outcome:
    """
    Record a pick; escalate when it overlaps another member's pick.

    A clean pick is provisionally assigned right away.
    """
    for other in state.members:
        if other.user_id == user_id or other.response != NegotiationResponse.CHOOSE_SLOT:
            continue
        if other.chosen_slot and other.chosen_slot.overlaps(chosen):
            outcome = Outcome(
                new_type=NegotiationType.FULL_CONFLICT,
                new_window=chosen,
                clear_provisional_in=chosen,
            )
            outcome.member_updates = [m.reset() for m in state.members]
            outcome.messages.append(
                f"Picks collided on {chosen.label()}; now a full conflict over that time."
            )
            return outcome

    updated = replace(
        state.member(user_id), response=NegotiationResponse.CHOOSE_SLOT, chosen_slot=chosen
    )
    outcome = Outcome(member_updates=[updated])
    outcome.assignments.append(Assignment(user_id, chosen, provisional=True))
    return outcome


def _resolve_time_slot_choice(state: NegotiationState) -> Outcome:
    picks = [m for m in state.members if m.chosen_slot is not None]
    for i, a in enumerate(picks):
        for b in picks[i + 1:]:
            if a.chosen_slot.overlaps(b.chosen_slot):
                overlap = a.chosen_slot
                outcome = Outcome(
                    new_type=NegotiationType.FULL_CONFLICT,
                    new_window=overlap,
                    clear_provisional_in=overlap,
                )
                # Picks stay on record so members can see what collided
                outcome.member_updates = [m.reset(chosen_slot=m.chosen_slot) for m in state.members]
                outcome.messages.append(
                    f"Picks collided on {overlap.label()}; now a full conflict over that time."
                )
                return outcome

    outcome = Outcome(resolved=True, resolution_type=ResolutionType.TIME_SLOT_CHOICE)
    outcome.messages.append("Every member picked a separate time.")
    return outcome


def with_response(
    state: NegotiationState,
    user_id: UUID,
    response: NegotiationResponse,
    yield_option: YieldOption | None = None,
    alternative_slots: tuple[DatedBlock, ...] = (),
    chosen_slot: DatedBlock | None = None,
) -> NegotiationState:
    """State with one member's answer recorded."""
    members = tuple(
        replace(
            m,
            response=response,
            yield_option=yield_option,
            alternative_slots=alternative_slots,
            chosen_slot=chosen_slot if chosen_slot is not None else m.chosen_slot,
        )
        if m.user_id == user_id
        else m
        for m in state.members
    )
    return replace(state, members=members)


def apply_member_updates(state: NegotiationState, updates: list[MemberState]) -> NegotiationState:
    by_user = {m.user_id: m for m in updates}
    return replace(state, members=tuple(by_user.get(m.user_id, m) for m in state.members))
