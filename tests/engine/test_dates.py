from __future__ import annotations

from intelli_tracker.engine.dates import most_recent_date_string, parse_loose


def test_parse_loose_handles_free_text() -> None:
    assert parse_loose("2024-05-02 09:00") is not None
    assert parse_loose("5/2/2024 9:00 AM") is not None
    assert parse_loose("soon") is None
    assert parse_loose("") is None
    assert parse_loose(None) is None


def test_parsed_values_are_comparable() -> None:
    assert parse_loose("2024-05-02T09:00:00Z") > parse_loose("2024-05-01T09:00:00Z")


def test_most_recent_date_string_keeps_original_text() -> None:
    values = ["2024-05-01 10:00", "not a date", "2024-05-03 08:15", "2024-05-02"]
    assert most_recent_date_string(values) == "2024-05-03 08:15"
    assert most_recent_date_string(["nope"]) == ""
