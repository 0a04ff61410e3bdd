"""
Data Ingestion - HTML Table Extractors.

============================================================
RESPONSIBILITY
============================================================
Locate the indicator table on a commodity-exchange page and read
its most recent row (date, value, daily variation).

============================================================
MARKUP CONTRACT (cepea-2024)
============================================================
- one or more <table> elements per page
- each row: <td>DD/MM/YYYY</td><td>value</td><td>var. %</td>...
- values in Brazilian format ("131,45", "-0,11%")
- pages with several indicators (ethanol, sugar, wheat, ...) label
  each table in its own text, its previous sibling (title) or its
  container

Selection:
- FirstTableExtractor: table at a fixed index
- KeywordTableExtractor: the FIRST table whose context contains a
  keyword (case-insensitive); ties are never broken further. With
  no match it falls back to the first table and logs a warning.
============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from data_ingestion.catalog import IndicatorPage
from data_ingestion.normalizers.market_normalizer import (
    looks_like_br_date,
    parse_br_date,
    parse_br_number,
)
from data_sources.exceptions import NormalizationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorRow:
    reference_date: date
    value: float
    variation: Optional[float]


def cell_texts(row: Tag) -> List[str]:
    return [" ".join(cell.get_text(" ").split()) for cell in row.find_all("td")]


def table_rows(table: Tag) -> List[Tag]:
    body = table.find("tbody")
    return (body or table).find_all("tr")


def data_rows(table: Tag) -> List[List[str]]:
    """Rows that start with a date and have at least date and value."""
    rows = []
    for row in table_rows(table):
        cells = cell_texts(row)
        if len(cells) >= 2 and looks_like_br_date(cells[0]):
            rows.append(cells)
    return rows


class TableExtractor(ABC):
    """Pluggable table selection + row extraction for one site layout."""

    markup_version: str = "cepea-2024"

    def __init__(self, min_rows: int = 1):
        self.min_rows = min_rows

    @abstractmethod
    def select_table(self, tables: Sequence[Tag]) -> Optional[Tag]:
        """Pick the indicator table among all tables of the page."""

    def extract(self, html: str, label: str = "") -> IndicatorRow:
        """
        Read the most recent indicator row.

        Raises:
            NormalizationError: no table or no dated row
        """
        soup = BeautifulSoup(html, "html.parser")
        tables = soup.find_all("table")
        if not tables:
            raise NormalizationError(f"No table found for {label or 'page'}")

        table = self.select_table(tables)
        if table is None:
            raise NormalizationError(f"No indicator table selected for {label or 'page'}")

        rows = data_rows(table)
        if not rows:
            raise NormalizationError(f"No dated row in indicator table for {label or 'page'}")

        first = rows[0]
        variation = None
        if len(first) >= 3 and first[2].replace("%", "").strip():
            variation = parse_br_number(first[2])

        return IndicatorRow(
            reference_date=parse_br_date(first[0]),
            value=parse_br_number(first[1]),
            variation=variation,
        )

    def _eligible(self, table: Tag) -> bool:
        return len(data_rows(table)) >= self.min_rows

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(markup={self.markup_version})>"


class FirstTableExtractor(TableExtractor):
    """Table at ``table_index`` (first table when out of range)."""

    def __init__(self, table_index: int = 0, min_rows: int = 1):
        super().__init__(min_rows=min_rows)
        self.table_index = table_index

    def select_table(self, tables: Sequence[Tag]) -> Optional[Tag]:
        if 0 <= self.table_index < len(tables):
            return tables[self.table_index]
        return tables[0] if tables else None


class KeywordTableExtractor(TableExtractor):
    """First table whose own, title or container text holds a keyword."""

    def __init__(self, keywords: Sequence[str], min_rows: int = 1):
        super().__init__(min_rows=min_rows)
        self.keywords = [k.upper() for k in keywords]

    @staticmethod
    def context_text(table: Tag) -> str:
        previous = table.find_previous_sibling()
        parent = table.parent
        parts = [
            table.get_text(" "),
            previous.get_text(" ") if previous is not None else "",
            parent.get_text(" ") if parent is not None else "",
        ]
        return " ".join(parts).upper()

    def select_table(self, tables: Sequence[Tag]) -> Optional[Tag]:
        for table in tables:
            if not self._eligible(table):
                continue
            context = self.context_text(table)
            if any(keyword in context for keyword in self.keywords):
                return table

        logger.warning(f"No table matched keywords {self.keywords}, falling back to first table")
        return tables[0] if tables else None


def extractor_for(page: IndicatorPage) -> TableExtractor:
    if page.keywords:
        return KeywordTableExtractor(page.keywords)
    return FirstTableExtractor(page.table_index)
