"""Slot exchange and negotiation services.

Services take a Session plus ids, raise CoordinationError subclasses and
commit once per operation through room_service.commit_room.
"""
