"""Tests for Junction wrappers."""

from types import SimpleNamespace

import pytest

from relmap.errors import UnknownFieldError
from relmap.junction import Junction, unwrap


@pytest.fixture
def club():
    return SimpleNamespace(id=1, title="MI6")


class TestJunction:
    def test_reads_instance_first(self, club):
        junction = Junction(club, {"role": "agent"})
        assert junction.title == "MI6"
        assert junction.role == "agent"

    def test_writes_go_to_the_instance(self, club):
        junction = Junction(club, {"role": "agent"})
        junction.title = "SIS"
        assert club.title == "SIS"

    def test_writes_to_junction_fields(self, club):
        junction = Junction(club, {"role": "agent"})
        junction.role = "M"
        assert junction.fields == {"role": "M"}
        assert not hasattr(club, "role")

    def test_unwrap(self, club):
        junction = Junction(club)
        assert junction.unwrap() is club
        assert unwrap(junction) is club
        assert unwrap(club) is club


class TestDynamicMode:
    def test_unknown_read_returns_none_and_is_absorbed(self, club):
        junction = Junction(club, {"role": "agent"})
        assert junction.since is None
        assert "since" in junction.fields

    def test_unknown_write_is_absorbed(self, club):
        junction = Junction(club)
        junction.since = 2006
        assert junction.fields == {"since": 2006}


class TestStrictMode:
    def test_unknown_read(self, club):
        junction = Junction(club, {"role": "agent"}, strict=True)
        with pytest.raises(UnknownFieldError, match='Property "since"'):
            junction.since

    def test_unknown_write(self, club):
        junction = Junction(club, {"role": "agent"}, strict=True)
        with pytest.raises(UnknownFieldError):
            junction.since = 2006

    def test_known_fields_still_work(self, club):
        junction = Junction(club, {"role": "agent"}, strict=True)
        junction.role = "M"
        assert junction.role == "M"
