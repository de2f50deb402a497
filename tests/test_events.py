"""Wire format of the trip events."""

import json

import pytest

from src.domain.errors import MalformedEvent
from src.domain.events import AcceptTripEvent, CreateTripEvent


def test_create_event_serialises_flat_camel_case():
    event = CreateTripEvent(
        trip_id="t1",
        user_id="u1",
        origin="A",
        destination="B",
        latitude="10.0",
        longitude="20.0",
    )
    assert json.loads(event.to_json()) == {
        "tripId": "t1",
        "userId": "u1",
        "origin": "A",
        "destination": "B",
        "latitude": "10.0",
        "longitude": "20.0",
    }


def test_accept_event_decodes():
    event = AcceptTripEvent.decode('{"tripId": "t1", "driverId": "d1"}')
    assert event.trip_id == "t1"
    assert event.driver_id == "d1"


def test_accept_event_ignores_unknown_fields():
    event = AcceptTripEvent.decode(
        b'{"tripId": "t1", "driverId": "d1", "eta": 4}'
    )
    assert event.driver_id == "d1"


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        '{"tripId": "t1"}',
        '{"tripId": "", "driverId": "d1"}',
        '{"tripId": 1, "driverId": ["d1"]}',
        b"\xff\xfe",
    ],
)
def test_undecodable_payloads_raise_malformed_event(payload):
    with pytest.raises(MalformedEvent):
        AcceptTripEvent.decode(payload)
