"""Scanned-document file naming.

Documents are filed as ``<date>_<institution>_<name>_<page>.<ext>``, e.g.
``2020-04-03_CityBank_Statement_1.pdf``. These helpers parse such names and
build normalized ones.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

from filecabinet.errors import ValidationError

_RE_DATE_HYPHENS = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})")
_RE_DATE_COMPACT = re.compile(r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})")
_RE_DATE_YEAR = re.compile(r"^(?P<year>\d{4})")
_RE_PAGE = re.compile(r"(\d+)")


def parse_date(text: str) -> str | None:
    """Return the leading date of ``text`` as ``YYYY-MM-DD``, or None."""
    for pattern in (_RE_DATE_HYPHENS, _RE_DATE_COMPACT):
        match = pattern.match(text)
        if match:
            return f"{match['year']}-{match['month']}-{match['day']}"
    match = _RE_DATE_YEAR.match(text)
    if match:
        return f"{match['year']}-01-01"
    return None


def parse_page(text: str) -> str | None:
    match = _RE_PAGE.search(text)
    return match.group(1) if match else None


def to_camelcase(text: str) -> str:
    """``"hello this is a test"`` -> ``"HelloThisIsATest"``."""
    words = text.strip().split(" ")
    return "".join(word[:1].upper() + word[1:] for word in words)


def extension(path: str | PurePath) -> str:
    return PurePath(path).suffix[1:].lower()


@dataclass(frozen=True)
class DocumentName:
    date: str | None = None
    institution: str | None = None
    name: str | None = None
    page: str | None = None

    @classmethod
    def parse(cls, filename: str | PurePath) -> DocumentName:
        stem = PurePath(filename).stem or str(filename)
        parts = stem.split("_")

        def _part(pos: int) -> str | None:
            return parts[pos] if pos < len(parts) else None

        date, page = _part(0), _part(3)
        return cls(
            date=parse_date(date) if date is not None else None,
            institution=_part(1),
            name=_part(2),
            page=parse_page(page) if page is not None else None,
        )

    @property
    def is_parseable(self) -> bool:
        return None not in (self.date, self.institution, self.name, self.page)

    def normalized(self, ext: str) -> str:
        if not self.is_parseable:
            raise ValidationError("Document name is missing date, institution, name or page")
        return f"{self.date}_{self.institution}_{self.name}_{self.page or '1'}.{ext}"


def is_normalized(path: str | PurePath) -> bool:
    """True if ``path`` already follows the document naming scheme."""
    path = PurePath(path)
    doc = DocumentName.parse(path)
    if not doc.is_parseable:
        return False
    return path.name == doc.normalized(extension(path))


def build_document_name(
    date: str,
    institution: str,
    name: str,
    page: str | int = 1,
    ext: str = "pdf",
) -> str:
    iso_date = parse_date(date)
    if iso_date is None:
        raise ValidationError(f"Unrecognized date {date!r}")
    page_number = parse_page(str(page))
    if page_number is None:
        raise ValidationError(f"Unrecognized page {page!r}")
    institution, name = to_camelcase(institution), to_camelcase(name)
    if not institution or not name:
        raise ValidationError("Institution and name must not be empty")
    doc = DocumentName(date=iso_date, institution=institution, name=name, page=page_number)
    return doc.normalized(ext.lower().lstrip("."))
