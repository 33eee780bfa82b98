import asyncio

import pytest

from errors import ExternalServiceError
from fakes import FakeVenues
from venue import VenueResolver, resolve_venue


def test_stored_preference_wins_over_ticket():
    assert resolve_venue("Royal Casino", "Other Hall") == ("Royal Casino", True)


def test_ticket_venue_used_without_preference():
    assert resolve_venue(None, "Other Hall") == ("Other Hall", False)


def test_neither_venue_known():
    assert resolve_venue(None, None) == ("not specified", False)
    assert resolve_venue("  ", "not specified") == ("not specified", False)


def test_same_venue_is_not_an_override():
    assert resolve_venue("Royal Casino", " Royal Casino ") == ("Royal Casino", False)


def test_preference_without_ticket_venue():
    assert resolve_venue("Royal Casino", None) == ("Royal Casino", False)


def test_resolver_reads_store():
    venues = FakeVenues()
    venues.venues["7"] = "Royal Casino"
    resolver = VenueResolver(venues, timeout=1)

    assert asyncio.run(resolver.resolve("7", "Hall X")) == ("Royal Casino", True)
    assert asyncio.run(resolver.resolve("8", "Hall X")) == ("Hall X", False)


def test_resolver_store_failure_is_external():
    venues = FakeVenues()
    venues.fail_get = True

    with pytest.raises(ExternalServiceError) as e:
        asyncio.run(VenueResolver(venues, timeout=1).resolve("7", "Hall X"))
    assert e.value.operation == "get_current_venue"
