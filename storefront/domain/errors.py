# storefront/domain/errors.py
from typing import Any, Dict, List


class NotFoundError(LookupError):
    pass


class StockConflictError(RuntimeError):
    """
    Brak towaru dla jednej lub wielu linii.
    lines: [{product_id, variant_id, name, requested, available}]
    """

    def __init__(self, lines: List[Dict[str, Any]]):
        self.lines = lines
        super().__init__("; ".join(self.describe(line) for line in lines))

    @staticmethod
    def describe(line: Dict[str, Any]) -> str:
        name = line.get("name") or f"Variant {line.get('variant_id')}"
        available = line.get("available") or 0
        if available <= 0:
            return f"{name} is out of stock"
        return f"{name} is out of stock, only {available} available"


class PriceMismatchError(ValueError):
    pass


class DiscountRejectedError(ValueError):
    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(reason)


class PaymentGatewayError(RuntimeError):
    pass


class InvalidTransitionError(ValueError):
    pass


class CheckoutInProgressError(RuntimeError):
    pass


class CheckoutBlockedError(RuntimeError):
    pass


class VariantRequiredError(ValueError):
    """Produkt ma sledzone warianty, linia musi wskazac jeden z nich."""

    def __init__(self, product_id: int, name: str):
        self.product_id = product_id
        super().__init__(f"Please choose a size for {name}")
