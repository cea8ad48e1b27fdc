"""
Vendor cost/quantity feed parsing.

The vendor report starts with a fixed preamble of metadata and header lines,
followed by RFC-4180 records in this column order:

    product name, variant, location, vendor, sku, quantity, list price, cost/unit

Rows with fewer than `min_fields` cells are reported as ParseError items and
the batch continues.
"""

import csv
import hashlib
import io
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Iterator, List, Optional, Union

from core.config import settings
from core.errors import ParseError

logger = logging.getLogger(__name__)

FEED_COLUMNS = (
    "product_name",
    "variant",
    "location_name",
    "vendor",
    "sku",
    "quantity",
    "list_price",
    "cost_unit",
)

_NUMBER_NOISE = re.compile(r"[\s$,]")


@dataclass(frozen=True)
class ParsedRow:
    line_number: int
    product_name: str
    variant: Optional[str]
    location_name: str
    vendor: Optional[str]
    sku: Optional[str]
    quantity: Decimal
    list_price: Optional[Decimal]
    cost_unit: Optional[Decimal]


FeedEntry = Union[ParsedRow, ParseError]


def decode_feed(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    """'$1,234.50' -> Decimal('1234.50'); '(3)' -> Decimal('-3'); junk -> None."""
    if value is None:
        return None
    cleaned = _NUMBER_NOISE.sub("", str(value))
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]
    if not cleaned:
        return None
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return -number if negative else number


def _optional(cell: str) -> Optional[str]:
    cell = (cell or "").strip()
    return cell or None


class FeedReader:
    """
    Lazy, restartable view over one feed's text.

    Every iteration parses from the top again; nothing is kept between runs.
    """

    def __init__(self, text: str, header_lines: Optional[int] = None, min_fields: Optional[int] = None):
        self.text = text
        self.header_lines = settings.feed_header_lines if header_lines is None else header_lines
        self.min_fields = settings.feed_min_fields if min_fields is None else min_fields

    def __iter__(self) -> Iterator[FeedEntry]:
        return self._parse()

    def _parse(self) -> Iterator[FeedEntry]:
        buf = io.StringIO(self.text, newline="")
        for _ in range(self.header_lines):
            if not buf.readline():
                return

        reader = csv.reader(buf)
        consumed = 0
        while True:
            start_line = self.header_lines + consumed + 1
            try:
                cells = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                consumed = reader.line_num
                yield ParseError(f"malformed record: {e}", line=start_line)
                continue
            consumed = reader.line_num

            cells = [c.strip() for c in cells]
            if not any(cells):
                continue
            yield self._to_row(cells, start_line)

    def _to_row(self, cells: List[str], line: int) -> FeedEntry:
        raw = ",".join(cells)
        if len(cells) < self.min_fields:
            return ParseError(
                f"expected at least {self.min_fields} fields, got {len(cells)}", line=line, raw=raw
            )
        cells = cells + [""] * (len(FEED_COLUMNS) - len(cells))

        product_name = cells[0]
        location_name = cells[2]
        if not product_name:
            return ParseError("product name is empty", line=line, raw=raw)
        if not location_name:
            return ParseError("location is empty", line=line, raw=raw)

        quantity = parse_decimal(cells[5])
        if quantity is None:
            return ParseError(f"invalid quantity {cells[5]!r}", line=line, raw=raw)

        return ParsedRow(
            line_number=line,
            product_name=product_name,
            variant=_optional(cells[1]),
            location_name=location_name,
            vendor=_optional(cells[3]),
            sku=_optional(cells[4]),
            quantity=quantity,
            list_price=parse_decimal(cells[6]),
            cost_unit=parse_decimal(cells[7]),
        )


def split_feed(entries: Iterable[FeedEntry]) -> tuple[List[ParsedRow], List[ParseError]]:
    rows: List[ParsedRow] = []
    errors: List[ParseError] = []
    for entry in entries:
        if isinstance(entry, ParseError):
            errors.append(entry)
        else:
            rows.append(entry)
    return rows, errors


def _identity_text(row: ParsedRow) -> str:
    parts = [row.vendor, row.location_name, row.sku, row.product_name, row.variant]
    return "|".join(" ".join((p or "").lower().split()) for p in parts)


def assign_row_keys(rows: Iterable[ParsedRow]) -> List[str]:
    """
    Stable identities for feed rows: the same row content in the same order
    gets the same key on every import. Repeats get an occurrence suffix.
    """
    seen: Dict[str, int] = {}
    keys: List[str] = []
    for row in rows:
        digest = hashlib.sha1(_identity_text(row).encode("utf-8")).hexdigest()[:24]
        n = seen.get(digest, 0)
        seen[digest] = n + 1
        keys.append(f"{digest}-{n}")
    return keys
