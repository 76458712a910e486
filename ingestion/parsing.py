"""
Delimited-text parsing for downloaded export results.

Also holds FieldMap, which resolves logical fields (SubID, revenue, SKU...)
to header positions through case-insensitive aliases.
"""

import io
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from core.exceptions import MalformedResponseError
import logging

logger = logging.getLogger(__name__)

Row = Tuple[str, ...]


def parse_delimited(text: str, delimiter: str = ",") -> Tuple[Row, List[Row]]:
    """
    Parse CSV text into a header tuple and data rows.

    Cells are kept as strings. A row keeps its own cell count (short rows are
    not padded) so column-count mismatches stay detectable. Blank lines
    become empty tuples.

    Returns:
        (headers, rows); ((), []) for empty input
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        return (), []

    width = max(line.count(delimiter) + 1 for line in text.splitlines())

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            names=range(width),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MalformedResponseError(
            "Failed to parse export result",
            context={"bytes": len(text)},
            original_exception=e
        )

    parsed: List[Row] = []
    for values in df.itertuples(index=False, name=None):
        cells = list(values)
        # Absent trailing fields are NaN; empty fields are ""
        while cells and not isinstance(cells[-1], str):
            cells.pop()
        parsed.append(tuple("" if not isinstance(c, str) else c for c in cells))

    if not parsed:
        return (), []

    headers = tuple(h.strip() for h in parsed[0])
    rows = parsed[1:]
    logger.debug(f"Parsed {len(rows)} rows with {len(headers)} columns")
    return headers, rows


DEFAULT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "subid": ("subid", "sub_id", "sub id"),
    "partner": ("partner", "media partner", "partner name"),
    "campaign": ("campaign", "campaign name"),
    "sku": ("sku", "product_sku", "product sku"),
    "revenue": ("sale_amount", "sale amount", "revenue", "saleamount"),
    "quantity": ("quantity", "items", "units"),
}


def _header_key(header: str) -> str:
    return str(header).strip().lower()


class FieldMap:
    """
    Case-insensitive header alias resolver.

    Aliases are tried in order; the first one present in the headers wins.
    """

    def __init__(self, aliases: Optional[Mapping[str, Iterable[str]]] = None):
        merged = dict(DEFAULT_ALIASES)
        for field, names in (aliases or {}).items():
            merged[field] = tuple(_header_key(n) for n in names)
        self.aliases = merged

    def resolve(self, headers: Sequence[str]) -> Dict[str, int]:
        """Map each known field to its column index, omitting absent ones."""
        positions: Dict[str, int] = {}
        for index, header in enumerate(headers):
            positions.setdefault(_header_key(header), index)

        resolved = {}
        for field, names in self.aliases.items():
            for name in names:
                if name in positions:
                    resolved[field] = positions[name]
                    break
        return resolved

    def index_of(self, headers: Sequence[str], field: str) -> Optional[int]:
        return self.resolve(headers).get(field)

    @staticmethod
    def value(cells: Sequence[str], index: Optional[int]) -> str:
        if index is None or index >= len(cells):
            return ""
        cell = cells[index]
        return cell.strip() if isinstance(cell, str) else str(cell)
