# dx_core/integrations/billing.py
from __future__ import annotations

from decimal import Decimal
from typing import Protocol, Sequence

from dx_core.catalog.types import DiagnosticTest, TestCategory


class BillingUnavailable(Exception):
    """Raised by gateways when the billing backend cannot answer."""


class BillingGateway(Protocol):
    def authorization_required(self, tests: Sequence[DiagnosticTest]) -> bool: ...

    def charges(self, tests: Sequence[DiagnosticTest]) -> list[dict]: ...


class CatalogBillingGateway:
    """
    Prices from catalog unit prices.
    Prior authorization: molecular tests, or CPT codes starting with one of `auth_cpt_prefixes`.
    """

    def __init__(self, *, auth_cpt_prefixes: Sequence[str] = ("8",)):
        self.auth_cpt_prefixes = tuple(auth_cpt_prefixes)

    def authorization_required(self, tests: Sequence[DiagnosticTest]) -> bool:
        for t in tests:
            if t.category == TestCategory.MOLECULAR:
                return True
            if any(t.cpt_code.startswith(p) for p in self.auth_cpt_prefixes):
                return True
        return False

    def charges(self, tests: Sequence[DiagnosticTest]) -> list[dict]:
        return [
            {"test_code": t.code, "cpt_code": t.cpt_code, "description": t.name, "amount": str(t.unit_price)}
            for t in tests
        ]


def charge_total(charges: Sequence[dict]) -> Decimal:
    return sum((Decimal(str(c.get("amount", "0"))) for c in charges), Decimal("0.00"))
