"""Tests for row filters."""

from livesync.infra.store import ALL, Filter


def test_eq_and_in_render_postgrest_params():
    flt = Filter.eq("session_id", "s1").and_in("participant_id", ["p1", "p2"])
    assert flt.to_params() == [
        ("session_id", "eq.s1"),
        ("participant_id", "in.(p1,p2)"),
    ]


def test_boolean_values_render_lowercase():
    flt = Filter.eq("session_id", "s1").and_eq("is_online", True)
    assert flt.to_params()[1] == ("is_online", "eq.true")


def test_realtime_filter_uses_first_condition_only():
    flt = Filter.eq("session_id", "s1").and_eq("is_online", True)
    assert flt.to_realtime() == "session_id=eq.s1"
    assert ALL.to_realtime() is None


def test_matches_evaluates_every_condition():
    flt = Filter.eq("session_id", "s1").and_in("id", ["a", "b"])
    assert flt.matches({"session_id": "s1", "id": "a"})
    assert not flt.matches({"session_id": "s1", "id": "c"})
    assert not flt.matches({"session_id": "s2", "id": "a"})
    assert ALL.matches({"anything": 1})


def test_empty_in_condition_matches_nothing():
    flt = Filter.in_("participant_id", [])
    assert not flt.matches({"participant_id": "p1"})


def test_scope_key_is_short_and_readable():
    assert ALL.scope_key() == "all"
    assert Filter.in_("participant_id", ["a", "b", "c"]).scope_key() == "participant_id-in3"
    assert Filter.eq("session_id", "0123456789abcdef").scope_key() == "session_id-0123456789ab"
