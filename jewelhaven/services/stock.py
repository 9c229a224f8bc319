# jewelhaven/services/stock.py
# Проверка остатков перед оформлением заказа.
# Каждая позиция проверяется отдельно и параллельно, решение принимается
# только когда ответили все. Ничего не резервирует.

import asyncio
import enum
import logging
from dataclasses import dataclass, field, asdict
from typing import Awaitable, Callable, Optional

from jewelhaven.core.errors import InvalidCartError
from jewelhaven.services.cart import Cart, CartLine
from jewelhaven.services.catalog import ProductSnapshot

logger = logging.getLogger(__name__)

ProductLookup = Callable[[int], Awaitable[Optional[ProductSnapshot]]]


class StockErrorKind(str, enum.Enum):
    none = "none"
    out_of_stock = "out_of_stock"
    insufficient_stock = "insufficient_stock"
    # товар не удалось прочитать: считаем проблемой, но просим повторить
    lookup_failed = "lookup_failed"


ISSUE_MESSAGES = {
    StockErrorKind.out_of_stock: "Product is out of stock",
    StockErrorKind.insufficient_stock: "Insufficient stock",
    StockErrorKind.lookup_failed: "Could not check stock, please retry",
}


@dataclass
class StockCheckResult:
    product_id: int
    product_name: str
    requested_qty: int
    available_qty: int
    error_kind: StockErrorKind = StockErrorKind.none

    @property
    def is_issue(self) -> bool:
        return self.error_kind is not StockErrorKind.none

    def to_dict(self) -> dict:
        data = asdict(self)
        data["error_kind"] = self.error_kind.value
        data["message"] = ISSUE_MESSAGES.get(self.error_kind)
        return data


@dataclass
class StockCheckReport:
    results: list[StockCheckResult] = field(default_factory=list)

    @property
    def issues(self) -> list[StockCheckResult]:
        return [r for r in self.results if r.is_issue]

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    @property
    def retryable(self) -> bool:
        """Все проблемы вызваны сбоем чтения, а не реальной нехваткой."""
        return self.has_issues and all(
            r.error_kind is StockErrorKind.lookup_failed for r in self.issues
        )

    def to_dict(self) -> dict:
        return {
            "has_issues": self.has_issues,
            "issues": [r.to_dict() for r in self.issues],
        }


class StockVerifier:
    """Сверяет корзину с актуальными остатками каталога."""

    def __init__(self, lookup: ProductLookup, timeout: Optional[float] = None):
        self.lookup = lookup
        self.timeout = timeout

    async def verify(self, cart: Cart) -> StockCheckReport:
        if cart.is_empty:
            raise InvalidCartError("Cart is empty")
        for line in cart.lines:
            if line.quantity < 1:
                raise InvalidCartError(f"Quantity for product {line.product_id} must be at least 1")

        results = await asyncio.gather(*(self._check_line(line) for line in cart.lines))
        report = StockCheckReport(results=list(results))
        if report.has_issues:
            logger.info(
                f"Stock check found {len(report.issues)} issue(s): "
                + ", ".join(f"{r.product_id}:{r.error_kind.value}" for r in report.issues)
            )
        return report

    async def _check_line(self, line: CartLine) -> StockCheckResult:
        try:
            product = await asyncio.wait_for(self.lookup(line.product_id), timeout=self.timeout)
        except Exception as e:
            # fail-closed: ошибка чтения одной позиции не прерывает проверку остальных
            logger.warning(f"Stock lookup for product {line.product_id} failed: {e!r}")
            return StockCheckResult(line.product_id, line.name, line.quantity, 0,
                                    StockErrorKind.lookup_failed)

        if product is None or not product.in_stock or product.stock_quantity <= 0:
            available = product.stock_quantity if product is not None else 0
            name = product.name if product is not None else line.name
            return StockCheckResult(line.product_id, name, line.quantity, max(available, 0),
                                    StockErrorKind.out_of_stock)
        if product.stock_quantity < line.quantity:
            return StockCheckResult(line.product_id, product.name, line.quantity,
                                    product.stock_quantity, StockErrorKind.insufficient_stock)
        return StockCheckResult(line.product_id, product.name, line.quantity, product.stock_quantity)
