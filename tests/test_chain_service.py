"""
Tests for chain exchanges.

Covers candidate ordering, the decline cascade, completion at one and
two hops, and failure leaving every slot where it was.
"""

from datetime import date, timedelta

import pytest

from coordination.db.enums import ChainStatus, ExchangeRequestStatus, ExchangeType, Weekday
from coordination.db.models import ExchangeRequest, TimeSlot
from coordination.services import chain_service, exchange_service
from coordination.services.errors import (
    ForbiddenError,
    InvalidStateError,
    ResolutionFailureError,
)
from coordination.utils.timeblocks import parse_hhmm

MONDAY = date(2026, 10, 19)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)
THURSDAY = MONDAY + timedelta(days=3)
FRIDAY = MONDAY + timedelta(days=4)


def holdings(db, room) -> set:
    return {
        (s.user_id, s.slot_date, s.start_minute)
        for s in db.query(TimeSlot).filter(TimeSlot.room_id == room.id)
    }


def owned(db, room, user) -> set:
    return {(d, m) for (u, d, m) in holdings(db, room) if u == user.id}


@pytest.fixture
def people(make_user):
    return {name: make_user(name) for name in ("owner", "alice", "bob", "carol", "dave", "erin")}


@pytest.fixture
def room(make_room, people):
    return make_room(people["owner"], [people[n] for n in ("alice", "bob", "carol", "dave", "erin")])


@pytest.fixture
def start_chain(db, room, people, add_slots, add_preference):
    """
    alice offers Mon 14:00-15:00 for bob's Mon 09:00-10:00. bob's only
    other preference is Tue 09:00, held by carol. Returns the first hop.
    """
    def _start():
        alice, bob = people["alice"], people["bob"]
        offered = add_slots(room, alice, MONDAY, "14:00", "15:00")
        add_slots(room, bob, MONDAY, "09:00", "10:00")
        add_preference(room, bob, Weekday.MONDAY, "09:00", "10:00")
        request = exchange_service.create_request(
            db,
            room.id,
            requester_id=alice.id,
            target_user_id=bob.id,
            target_day=Weekday.MONDAY,
            target_time=parse_hhmm("09:00"),
            requester_slot_ids=[s.id for s in offered],
            today=MONDAY,
        )
        result = exchange_service.respond_to_request(
            db, room.id, request.id, bob.id, "accept", today=MONDAY
        )
        assert result.exchange_type == ExchangeType.CHAIN_STARTED
        return request, result.chain_request
    return _start


def answer(db, room, hop, user, action):
    return chain_service.respond_to_chain_request(
        db, room.id, hop.id, user.id, action, today=MONDAY
    )


# =============================================================================
# Candidate finder
# =============================================================================

class TestFindChainCandidates:
    def test_sorted_by_date_then_time(self, db, room, people, add_slots, add_preference):
        bob = people["bob"]
        for day in (Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY):
            add_preference(room, bob, day, "09:00", "11:00")
        add_slots(room, people["dave"], WEDNESDAY, "09:00", "10:00")
        add_slots(room, people["carol"], TUESDAY, "10:00", "11:00")
        add_slots(room, people["erin"], MONDAY, "09:00", "10:00")

        candidates = chain_service.find_chain_candidates(
            db, room, bob.id, 60, exclude_user_ids=set(), today=MONDAY
        )

        assert [c.user_id for c in candidates] == [
            people["erin"].id,
            people["carol"].id,
            people["dave"].id,
        ]
        assert candidates[1].occupied.start == parse_hhmm("10:00")
        assert candidates[2].days_from_today == 2

    def test_skips_past_days_short_runs_and_excluded(
        self, db, room, people, add_slots, add_preference
    ):
        bob = people["bob"]
        for day in (Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY):
            add_preference(room, bob, day, "09:00", "10:00")
        add_slots(room, people["erin"], MONDAY, "09:00", "10:00")
        # Only half of the hour
        add_slots(room, people["carol"], TUESDAY, "09:30", "10:00")
        add_slots(room, people["dave"], WEDNESDAY, "09:00", "10:00")
        add_slots(room, people["alice"], WEDNESDAY, "09:00", "10:00")

        candidates = chain_service.find_chain_candidates(
            db, room, bob.id, 60, exclude_user_ids={people["alice"].id}, today=TUESDAY
        )

        assert [c.user_id for c in candidates] == [people["dave"].id]

    def test_non_member_has_no_candidates(self, db, room, people):
        assert chain_service.find_chain_candidates(
            db, room, people["owner"].id, 60, exclude_user_ids=set(), today=MONDAY
        ) == []


# =============================================================================
# Hop responses
# =============================================================================

class TestChainResponses:
    def test_completes_after_one_hop(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        alice, bob, carol = people["alice"], people["bob"], people["carol"]
        add_preference(room, bob, Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, carol, TUESDAY, "09:00", "10:00")
        add_preference(room, carol, Weekday.TUESDAY, "09:00", "10:00")
        add_preference(room, carol, Weekday.WEDNESDAY, "09:00", "10:00")
        request, hop = start_chain()
        assert hop.target_user_id == carol.id
        total = len(holdings(db, room))

        result = answer(db, room, hop, carol, "accept")

        assert result.status == ChainStatus.COMPLETED
        assert result.alternative_slot.slot_date == WEDNESDAY
        assert owned(db, room, alice) == {(MONDAY, 540), (MONDAY, 570)}
        assert owned(db, room, bob) == {(TUESDAY, 540), (TUESDAY, 570)}
        assert owned(db, room, carol) == {(WEDNESDAY, 540), (WEDNESDAY, 570)}
        assert len(holdings(db, room)) == total
        db.expire_all()
        assert db.get(ExchangeRequest, request.id).status == ExchangeRequestStatus.APPROVED.value
        assert db.get(ExchangeRequest, hop.id).status == ExchangeRequestStatus.APPROVED.value

    def test_decline_cascades_then_fails(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        bob, carol, dave = people["bob"], people["carol"], people["dave"]
        add_preference(room, bob, Weekday.TUESDAY, "09:00", "10:00")
        add_preference(room, bob, Weekday.WEDNESDAY, "09:00", "10:00")
        add_slots(room, carol, TUESDAY, "09:00", "10:00")
        add_slots(room, dave, WEDNESDAY, "09:00", "10:00")
        request, hop = start_chain()
        before = holdings(db, room)

        first = answer(db, room, hop, carol, "reject")
        assert first.status == ChainStatus.NEXT_CANDIDATE
        assert first.next_hop.target_user_id == dave.id
        assert first.next_hop.chain_data["rejected_users"] == [str(carol.id)]

        second = answer(db, room, first.next_hop, dave, "reject")
        assert second.status == ChainStatus.FAILED
        assert second.original.status == ExchangeRequestStatus.REJECTED.value
        assert holdings(db, room) == before

    def test_goes_deeper_then_completes(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        alice, bob, carol, erin = people["alice"], people["bob"], people["carol"], people["erin"]
        add_preference(room, bob, Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, carol, TUESDAY, "09:00", "10:00")
        add_preference(room, carol, Weekday.TUESDAY, "09:00", "10:00")
        add_preference(room, carol, Weekday.THURSDAY, "09:00", "10:00")
        add_slots(room, erin, THURSDAY, "09:00", "10:00")
        add_preference(room, erin, Weekday.THURSDAY, "09:00", "10:00")
        add_preference(room, erin, Weekday.FRIDAY, "09:00", "10:00")
        request, hop = start_chain()
        total = len(holdings(db, room))

        deeper = answer(db, room, hop, carol, "accept")
        assert deeper.status == ChainStatus.DEEPER
        assert deeper.next_hop.target_user_id == erin.id
        assert len(deeper.next_hop.chain_data["hops"]) == 2

        done = answer(db, room, deeper.next_hop, erin, "accept")
        assert done.status == ChainStatus.COMPLETED
        assert owned(db, room, alice) == {(MONDAY, 540), (MONDAY, 570)}
        assert owned(db, room, bob) == {(TUESDAY, 540), (TUESDAY, 570)}
        assert owned(db, room, carol) == {(THURSDAY, 540), (THURSDAY, 570)}
        assert owned(db, room, erin) == {(FRIDAY, 540), (FRIDAY, 570)}
        assert len(holdings(db, room)) == total

    def test_accept_without_way_out_fails_cleanly(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        bob, carol = people["bob"], people["carol"]
        add_preference(room, bob, Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, carol, TUESDAY, "09:00", "10:00")
        add_preference(room, carol, Weekday.TUESDAY, "09:00", "10:00")
        request, hop = start_chain()
        before = holdings(db, room)

        with pytest.raises(ResolutionFailureError):
            answer(db, room, hop, carol, "accept")

        db.expire_all()
        assert db.get(ExchangeRequest, request.id).status == ExchangeRequestStatus.REJECTED.value
        assert db.get(ExchangeRequest, hop.id).status == ExchangeRequestStatus.REJECTED.value
        assert holdings(db, room) == before

    def test_only_asked_member_answers(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        add_preference(room, people["bob"], Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, people["carol"], TUESDAY, "09:00", "10:00")
        request, hop = start_chain()

        with pytest.raises(ForbiddenError):
            answer(db, room, hop, people["dave"], "accept")

    def test_exchange_request_is_not_a_hop(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        add_preference(room, people["bob"], Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, people["carol"], TUESDAY, "09:00", "10:00")
        request, hop = start_chain()

        with pytest.raises(InvalidStateError):
            answer(db, room, request, people["bob"], "accept")

    def test_cancelled_exchange_closes_hop(
        self, db, room, people, add_slots, add_preference, start_chain
    ):
        add_preference(room, people["bob"], Weekday.TUESDAY, "09:00", "10:00")
        add_slots(room, people["carol"], TUESDAY, "09:00", "10:00")
        request, hop = start_chain()
        exchange_service.cancel_request(db, room.id, request.id, people["alice"].id)

        with pytest.raises(InvalidStateError):
            answer(db, room, hop, people["carol"], "accept")
