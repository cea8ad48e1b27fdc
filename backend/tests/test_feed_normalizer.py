"""Tests for vendor feed parsing."""

from decimal import Decimal

from conftest import make_feed
from core.errors import ParseError
from services.feed_normalizer import (
    FeedReader,
    ParsedRow,
    assign_row_keys,
    decode_feed,
    parse_decimal,
    split_feed,
)


def _reader(*lines, **kwargs):
    return FeedReader(decode_feed(make_feed(*lines)), **kwargs)


def test_parses_rows_after_preamble():
    rows, errors = split_feed(_reader(
        "Cold Brew Coffee,32oz,Downtown,Acme,SKU-100,9,$6.49,$3.10",
        "Organic Honey,12oz,Uptown,Bee Co,,5,11.99,6.20",
    ))
    assert errors == []
    assert len(rows) == 2
    first = rows[0]
    assert isinstance(first, ParsedRow)
    assert first.product_name == "Cold Brew Coffee"
    assert first.variant == "32oz"
    assert first.location_name == "Downtown"
    assert first.vendor == "Acme"
    assert first.sku == "SKU-100"
    assert first.quantity == Decimal("9")
    assert first.list_price == Decimal("6.49")
    assert first.cost_unit == Decimal("3.10")
    assert first.line_number == 10
    assert rows[1].sku is None


def test_quoted_fields_with_commas_quotes_and_newlines():
    rows, errors = split_feed(_reader(
        '"Chips, Sea Salt","Family ""Big"" Bag",Downtown,Acme,CHP-1,"1,200","$2.49",1.05',
        '"Trail Mix\nDeluxe",,Downtown,Acme,TM-1,3,4.00,2.00',
        "Gum,,Downtown,Acme,G-1,2,1.00,0.40",
    ))
    assert errors == []
    assert rows[0].product_name == "Chips, Sea Salt"
    assert rows[0].variant == 'Family "Big" Bag'
    assert rows[0].quantity == Decimal("1200")
    assert rows[1].product_name == "Trail Mix\nDeluxe"
    # the quoted newline spans two physical lines
    assert rows[2].line_number == rows[1].line_number + 2


def test_short_rows_are_counted_and_batch_continues():
    rows, errors = split_feed(_reader(
        "Cold Brew Coffee,32oz,Downtown,Acme,SKU-100,9,6.49,3.10",
        "broken,row,Downtown",
        "Organic Honey,12oz,Uptown,Bee Co,HNY-12,5,11.99,6.20",
    ))
    assert [r.product_name for r in rows] == ["Cold Brew Coffee", "Organic Honey"]
    assert len(errors) == 1
    assert isinstance(errors[0], ParseError)
    assert errors[0].line == 11
    assert "at least 6 fields" in errors[0].detail


def test_six_fields_are_enough():
    rows, errors = split_feed(_reader("Gum,,Downtown,Acme,G-1,2"))
    assert errors == []
    assert rows[0].list_price is None
    assert rows[0].cost_unit is None


def test_invalid_quantity_and_missing_location_are_errors():
    rows, errors = split_feed(_reader(
        "Gum,,Downtown,Acme,G-1,lots,1.00,0.40",
        "Mints,,,Acme,M-1,2,1.00,0.40",
    ))
    assert rows == []
    assert len(errors) == 2
    assert "quantity" in errors[0].detail
    assert "location" in errors[1].detail


def test_blank_records_are_skipped_silently():
    rows, errors = split_feed(_reader(
        "",
        ",,,,,,,",
        "Gum,,Downtown,Acme,G-1,2,1.00,0.40",
    ))
    assert len(rows) == 1
    assert errors == []


def test_reader_is_restartable_and_lazy():
    reader = _reader(
        "Gum,,Downtown,Acme,G-1,2,1.00,0.40",
        "Mints,,Downtown,Acme,M-1,3,1.00,0.40",
    )
    first_pass = list(reader)
    second_pass = list(reader)
    assert first_pass == second_pass
    assert len(first_pass) == 2

    it = iter(reader)
    assert next(it).product_name == "Gum"


def test_preamble_only_feed_is_empty():
    text = decode_feed(make_feed())
    assert list(FeedReader(text)) == []
    assert list(FeedReader("only\nthree\nlines")) == []


def test_custom_header_lines():
    text = "Product,Variant,Location,Vendor,SKU,Qty\nGum,,Downtown,Acme,G-1,2\n"
    rows, errors = split_feed(FeedReader(text, header_lines=1))
    assert len(rows) == 1
    assert rows[0].line_number == 2


def test_decode_feed_handles_bom_and_latin1():
    assert decode_feed("\ufeffabc".encode("utf-8")) == "abc"
    assert decode_feed("Café".encode("latin-1")) == "Café"


def test_parse_decimal():
    assert parse_decimal(" $1,234.50 ") == Decimal("1234.50")
    assert parse_decimal("(3)") == Decimal("-3")
    assert parse_decimal("") is None
    assert parse_decimal("n/a") is None
    assert parse_decimal("NaN") is None
    assert parse_decimal(None) is None


def test_row_keys_are_stable_and_unique_for_repeats():
    lines = (
        "Gum,,Downtown,Acme,G-1,2,1.00,0.40",
        "Gum,,Downtown,Acme,G-1,2,1.00,0.40",
        "Mints,,Downtown,Acme,M-1,3,1.00,0.40",
    )
    rows, _ = split_feed(_reader(*lines))
    keys = assign_row_keys(rows)
    assert len(set(keys)) == 3
    assert keys[0].rsplit("-", 1)[0] == keys[1].rsplit("-", 1)[0]

    again, _ = split_feed(_reader(*lines))
    assert assign_row_keys(again) == keys


def test_row_key_ignores_quantity_changes():
    before, _ = split_feed(_reader("Gum,,Downtown,Acme,G-1,2,1.00,0.40"))
    after, _ = split_feed(_reader("Gum,,Downtown,Acme,G-1,7,1.10,0.45"))
    assert assign_row_keys(before) == assign_row_keys(after)
