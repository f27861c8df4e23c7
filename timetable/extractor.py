"""
Change extraction from the weekly timetable grid.

Every lesson slot in the grid is a cell spanning twelve columns and one or
more rows, holding a small nested table with four fields in fixed order:
subject, reference number, room, teacher. A slot that deviates from the base
plan has its fields printed in red.

Two readings are provided:

- ``extract_changes`` scans the grid cells. It is the authoritative count.
- ``extract_changes_from_summary`` counts the rows of the summary table below
  the grid plus the red cancellation markers. It is kept as a cross-check for
  diagnostics only; on malformed pages the two may disagree.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Set

import structlog
from bs4 import BeautifulSoup, Tag

from timetable.models import ChangeSummary, ExtractionMethod

logger = structlog.get_logger(__name__)

LESSON_COLSPAN = "12"
EMPTY_SUBJECT_TOKENS = frozenset({"---", "+---+"})
SUMMARY_TABLE_BGCOLORS = frozenset({"#e7e7e7"})
SUMMARY_CANCELLATION_MARKER = "+---+"

_REFERENCE_NUMBER = re.compile(r"^\d+\)$")
_SUMMARY_ROW = re.compile(r"^\s*(\d+)\)")
_HIGHLIGHT = re.compile(r"#?ff0000|\bred\b", re.IGNORECASE)


@dataclass
class SlotField:
    """Text of one field in a lesson cell and whether it is highlighted."""
    text: str
    highlighted: bool


def _parse(raw_markup: str) -> BeautifulSoup:
    return BeautifulSoup(raw_markup or "", "html.parser")


def _is_highlighted(font: Tag) -> bool:
    colour = f"{font.get('color', '')} {font.get('style', '')}"
    return bool(_HIGHLIGHT.search(colour))


def _lesson_cells(soup: BeautifulSoup) -> List[Tag]:
    cells = []
    for cell in soup.find_all("td", attrs={"colspan": LESSON_COLSPAN}):
        if cell.get("rowspan") is None:
            continue
        if cell.find("table") is None:
            continue
        cells.append(cell)
    return cells


def _slot_fields(cell: Tag) -> List[SlotField]:
    inner = cell.find("table")
    fields = []
    for td in inner.find_all("td"):
        font = td.find("font")
        if font is None:
            continue
        fields.append(SlotField(text=font.get_text(strip=True), highlighted=_is_highlighted(font)))
    return fields


def _slot_key(fields: List[SlotField]) -> str:
    """Reference number such as "4)" when present, else the subject text."""
    for field in fields:
        if _REFERENCE_NUMBER.match(field.text):
            return field.text
    return fields[0].text


def extract_changes(raw_markup: str) -> ChangeSummary:
    """
    Count substitutions and cancellations in the timetable grid.

    Only cells with at least one highlighted field count. A highlighted slot
    whose subject is the empty placeholder is a cancellation, any other
    highlighted slot is a substitution. Plain empty slots are free periods and
    are ignored. Row-spanning cells can repeat a slot, so each slot key is
    counted once.
    """
    try:
        soup = _parse(raw_markup)
        cells = _lesson_cells(soup)
    except Exception as e:
        logger.warning("Failed to parse timetable grid", error=str(e))
        return ChangeSummary()

    substitutions = 0
    cancellations = 0
    seen: Set[str] = set()

    for cell in cells:
        fields = _slot_fields(cell)
        if not fields or not any(field.highlighted for field in fields):
            continue

        key = _slot_key(fields)
        if key in seen:
            continue
        seen.add(key)

        if fields[0].text in EMPTY_SUBJECT_TOKENS:
            cancellations += 1
        else:
            substitutions += 1

    logger.debug(
        "Extracted grid changes",
        lesson_cells=len(cells),
        substitutions=substitutions,
        cancellations=cancellations,
    )
    return ChangeSummary(
        substitutions=substitutions,
        cancellations=cancellations,
        method=ExtractionMethod.GRID_SCAN,
    )


def _summary_tables(soup: BeautifulSoup, bgcolors) -> List[Tag]:
    return [
        table for table in soup.find_all("table")
        if str(table.get("bgcolor", "")).strip().lower() in bgcolors
    ]


def extract_changes_from_summary(raw_markup: str, bgcolors: Optional[Set[str]] = None) -> ChangeSummary:
    """
    Count changes from the summary table and the red cancellation markers.

    Substitutions are the distinct "N)" rows of the summary table. Red
    cancellation markers are printed once per spanned row half, so their count
    is halved.
    """
    bgcolors = {c.lower() for c in (bgcolors or SUMMARY_TABLE_BGCOLORS)}
    try:
        soup = _parse(raw_markup)
    except Exception as e:
        logger.warning("Failed to parse summary table", error=str(e))
        return ChangeSummary(method=ExtractionMethod.SUMMARY_TABLE)

    numbers: Set[str] = set()
    for table in _summary_tables(soup, bgcolors):
        for row in table.find_all("tr"):
            first_cell = row.find(["td", "th"])
            if first_cell is None:
                continue
            match = _SUMMARY_ROW.match(first_cell.get_text(" ", strip=True))
            if match:
                numbers.add(match.group(1))

    markers = sum(
        1 for font in soup.find_all("font")
        if _is_highlighted(font) and font.get_text(strip=True) == SUMMARY_CANCELLATION_MARKER
    )

    return ChangeSummary(
        substitutions=len(numbers),
        cancellations=markers // 2,
        method=ExtractionMethod.SUMMARY_TABLE,
    )
