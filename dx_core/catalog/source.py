# dx_core/catalog/source.py
from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from django.conf import settings
from django.utils.module_loading import import_string

from dx_core.catalog.defaults import DEFAULT_TESTS
from dx_core.catalog.types import DiagnosticTest
from dx_core.common.errors import DuplicateTestCode, InvalidTestCode


class CatalogSource(Protocol):
    def get(self, code: str) -> DiagnosticTest: ...

    def get_many(self, codes: Sequence[str]) -> list[DiagnosticTest]: ...

    def category_rank(self, category: str) -> int: ...


class StaticCatalog:
    """
    In-memory catalog over a fixed tuple of entries.
    Codes are matched case-insensitively and stored upper-case.
    """

    def __init__(self, entries: Iterable[DiagnosticTest]):
        self._entries: dict[str, DiagnosticTest] = {}
        self._category_rank: dict[str, int] = {}
        for entry in entries:
            code = entry.code.upper()
            if code in self._entries:
                raise DuplicateTestCode(f"Catalog declares {code} twice.")
            self._entries[code] = entry
            self._category_rank.setdefault(str(entry.category), len(self._category_rank))

    def __contains__(self, code: str) -> bool:
        return (code or "").strip().upper() in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def get(self, code: str) -> DiagnosticTest:
        key = (code or "").strip().upper()
        try:
            return self._entries[key]
        except KeyError:
            raise InvalidTestCode(f"Unknown test code: {code!r}", details={"code": code})

    def get_many(self, codes: Sequence[str]) -> list[DiagnosticTest]:
        seen: set[str] = set()
        out: list[DiagnosticTest] = []
        for code in codes:
            test = self.get(code)
            if test.code in seen:
                raise DuplicateTestCode(details={"code": test.code})
            seen.add(test.code)
            out.append(test)
        return out

    def category_rank(self, category: str) -> int:
        return self._category_rank.get(str(category), len(self._category_rank))


_DEFAULT_CATALOG = StaticCatalog(DEFAULT_TESTS)


def default_catalog() -> StaticCatalog:
    return _DEFAULT_CATALOG


def get_catalog() -> CatalogSource:
    """
    Active catalog, resolved from settings.DX_CATALOG (dotted path to a zero-arg factory).
    """
    path = getattr(settings, "DX_CATALOG", "dx_core.catalog.source.default_catalog")
    return import_string(path)()
