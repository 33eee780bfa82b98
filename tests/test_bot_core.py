from datetime import date

import pytest

from bot_core import (
    EditField,
    apply_field_edit,
    build_tournament_list,
    compute_stats,
    describe_field_edit,
    error_message,
    escape_markdown,
    format_currency,
    format_percentage,
    format_signed_currency,
    normalize_venue,
    parse_amount,
    parse_date,
    parse_delimited_fields,
    parse_field_edit,
    parse_registration,
    parse_result,
    result_metrics,
    validate_draft,
)
from errors import FormatError, ValidationError
from models import ResultInput, Tournament, TournamentDraft, TournamentResult


def make_tournament(tid, buyin, position=None, payout=None):
    result = None
    if position is not None:
        profit, roi = result_metrics(buyin, payout)
        result = TournamentResult(position, payout, profit, roi)
    return Tournament(
        id=str(tid), user_id="1", name=f"T{tid}", date=date(2024, 12, 15), venue="Aria", buyin=buyin, result=result
    )


def test_registration_pipe_delimited():
    d = parse_registration("Sunday Special | 15.12.2024 | 500 | Aria Casino")
    assert d.name == "Sunday Special"
    assert d.date == date(2024, 12, 15)
    assert d.buyin == 500
    assert d.venue == "Aria Casino"
    assert d.tournament_type == "freezeout"


DELIMITERS = [" | ", "|", " - ", " – ", " — "]


@pytest.mark.parametrize("delim", DELIMITERS)
def test_registration_accepts_every_delimiter(delim):
    d = parse_registration(delim.join(["Sunday Special", "15.12.2024", "500", "Aria Casino"]))
    assert (d.name, d.date, d.buyin, d.venue) == ("Sunday Special", date(2024, 12, 15), 500, "Aria Casino")


@pytest.mark.parametrize("delim", DELIMITERS)
def test_result_accepts_every_delimiter(delim):
    assert parse_result(delim.join(["3", "850"])) == ResultInput(3, 850)


def test_registration_dash_delimited_iso_date():
    d = parse_registration("Sunday Special - 2024-12-15 - 500 - Aria Casino")
    assert d.date == date(2024, 12, 15)
    assert d.venue == "Aria Casino"


def test_earlier_delimiter_wins_even_when_later_one_fits():
    # Splitting on " - " alone would give 4 fields.
    with pytest.raises(FormatError) as e:
        parse_registration("Sunday | Special - 15.12.2024 - 500 - Aria")
    assert "Expected 4 fields, got 2" in str(e.value)


def test_en_dash_wins_over_em_dash():
    with pytest.raises(FormatError):
        parse_registration("Sunday – Special — 15.12.2024 — 500 — Aria")


def test_first_listed_delimiter_wins():
    # " | " is present, so the hyphenated venue is kept whole.
    d = parse_registration("Deepstack | 01/02/2025 | 200 | Bar-Casino")
    assert d.venue == "Bar-Casino"
    assert d.date == date(2025, 2, 1)


def test_pipe_in_name_changes_field_count():
    with pytest.raises(FormatError) as e:
        parse_registration("Main | Event | 15.12.2024 | 500 | Aria")
    assert "Expected 4 fields, got 5" in str(e.value)


def test_empty_fields_are_dropped_before_counting():
    with pytest.raises(FormatError):
        parse_registration("Sunday | | 15.12.2024 | 500")


def test_registration_rejects_bad_date():
    with pytest.raises(FormatError):
        parse_registration("Sunday | 31.02.2024 | 500 | Aria")


def test_registration_rejects_zero_buyin():
    with pytest.raises(ValidationError):
        parse_registration("Sunday | 15.12.2024 | 0 | Aria")


def test_registration_rejects_negative_buyin():
    with pytest.raises(ValidationError):
        parse_registration("Sunday | 15.12.2024 | -5 | Aria")


def test_registration_rejects_text_buyin():
    with pytest.raises(FormatError):
        parse_registration("Sunday | 15.12.2024 | lots | Aria")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1 | 2500", ResultInput(1, 2500)),
        ("15 - 0", ResultInput(15, 0)),
        ("3 850", ResultInput(3, 850)),
        ("2|1200.50", ResultInput(2, 1200.5)),
    ],
)
def test_parse_result(text, expected):
    assert parse_result(text) == expected


def test_result_comma_is_not_a_delimiter():
    with pytest.raises(FormatError):
        parse_result("1,2500")


def test_comma_thousands_separator():
    assert parse_result("1 | 2,500").payout == 2500
    assert parse_result("2 1,234,567.50").payout == 1234567.5
    assert parse_registration("Main | 15.12.2024 | 1,500 | Aria").buyin == 1500


def test_comma_decimal_separator():
    assert parse_amount("12,5") == 12.5
    assert parse_amount("2,50") == 2.5
    assert parse_registration("Main | 15.12.2024 | 99,9 | Aria").buyin == 99.9


def test_result_rejects_position_zero():
    with pytest.raises(ValidationError):
        parse_result("0 | 100")


def test_result_rejects_fractional_position():
    with pytest.raises(FormatError):
        parse_result("1.5 | 100")


def test_result_rejects_negative_payout():
    with pytest.raises(ValidationError):
        parse_result("3 | -100")


@pytest.mark.parametrize("value", ["15.12.2024", "15/12/2024", "2024-12-15"])
def test_parse_date_formats(value):
    assert parse_date(value) == date(2024, 12, 15)


@pytest.mark.parametrize("value", ["32.01.2024", "29.02.2023", "2024-13-01", "15-12-2024", "tomorrow"])
def test_parse_date_rejects(value):
    with pytest.raises(FormatError):
        parse_date(value)


def test_parse_date_leap_day():
    assert parse_date("29.02.2024") == date(2024, 2, 29)


def test_whitespace_split_only_for_results():
    assert parse_delimited_fields("3   850", 2, allow_whitespace=True) == ["3", "850"]
    with pytest.raises(FormatError):
        parse_delimited_fields("3 850", 2)


def test_parse_field_edit():
    assert parse_field_edit("buyin: 300") == (EditField.BUYIN, "300")
    assert parse_field_edit("Venue:Hall: East") == (EditField.VENUE, "Hall: East")


def test_parse_field_edit_unknown_field():
    with pytest.raises(FormatError) as e:
        parse_field_edit("prize:100")
    assert "Unknown field: prize" in str(e.value)
    assert "name, date, buyin, venue" in str(e.value)


def test_parse_field_edit_without_colon():
    with pytest.raises(FormatError):
        parse_field_edit("buyin 300")


def test_apply_field_edit_returns_new_draft():
    draft = TournamentDraft(name="Old", buyin=100)
    edited = apply_field_edit(draft, EditField.BUYIN, "300")
    assert edited.buyin == 300
    assert draft.buyin == 100
    assert describe_field_edit(edited, EditField.BUYIN) == "Buy-in changed to: $300"


def test_apply_field_edit_validates():
    with pytest.raises(ValidationError):
        apply_field_edit(TournamentDraft(), EditField.NAME, "   ")
    with pytest.raises(FormatError):
        apply_field_edit(TournamentDraft(), EditField.DATE, "soon")


def test_validate_draft():
    assert validate_draft(TournamentDraft(name="A", date=date(2024, 1, 1), buyin=10)) == []
    problems = validate_draft(TournamentDraft(name=" "))
    assert len(problems) == 3


def test_normalize_venue():
    assert normalize_venue("  Aria ") == "Aria"
    assert normalize_venue("") is None
    assert normalize_venue("Not specified") is None
    assert normalize_venue(None) is None


def test_result_metrics():
    assert result_metrics(100, 2500) == (2400, 2400.0)
    assert result_metrics(0, 50) == (50, 0.0)


def test_formatting():
    assert format_currency(2400) == "$2,400"
    assert format_currency(-100) == "-$100"
    assert format_currency(12.5) == "$12.50"
    assert format_signed_currency(2400) == "+$2,400"
    assert format_percentage(2400.0) == "+2400.0%"
    assert format_percentage(-50) == "-50.0%"
    assert format_percentage(0) == "0.0%"


def test_escape_markdown():
    assert escape_markdown("a_b*c`d[e") == "a\\_b\\*c\\`d\\[e"


def test_error_message():
    assert error_message("Bad") == "❌ Bad"
    assert error_message("Bad", "Fix it") == "❌ Bad\n\n💡 Fix it"


def test_compute_stats():
    stats = compute_stats([make_tournament(1, 100, 1, 2500), make_tournament(2, 100), make_tournament(3, 200, 5, 0)])
    assert stats.total_tournaments == 3
    assert stats.total_buyin == 400
    assert stats.total_winnings == 2500
    assert stats.profit == 2100
    assert stats.roi == pytest.approx(525.0)
    assert stats.best_position == 1
    assert stats.best_payout == 2500


def test_compute_stats_empty():
    stats = compute_stats([])
    assert stats.roi == 0.0
    assert stats.itm_rate == 0.0
    assert stats.best_position is None


def test_tournament_list_is_limited():
    text = build_tournament_list([make_tournament(i, 100) for i in range(1, 13)])
    assert "T10" in text
    assert "T11" not in text
    assert "...and 2 more" in text
