"""
Report service: runs reports against fresh snapshots of a store.

Each call takes its own snapshot, so a report never observes a mutation
that happens while it runs, and two reports in one call chain may see
different points in time.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, List, Optional

from ..config import Settings
from ..schema.types import AccountType
from ..store.entity_store import EntityStore, StoreSnapshot
from . import reports

logger = logging.getLogger(__name__)


class ReportService:
    """Named reports over an EntityStore, with defaults from Settings.

    Example:
        >>> service = ReportService(store)
        >>> service.top_spenders()          # settings.top_spenders_limit
        >>> service.run("low-stock", threshold=10)
    """

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None) -> None:
        self._store = store
        self._settings = settings or Settings()

    def snapshot(self) -> StoreSnapshot:
        return self._store.snapshot()

    def run(self, name: str, **params: Any) -> List[Any]:
        """Run a report by its CLI name.

        Parameters the report does not take are ignored, so callers can
        pass one set of options for every report.

        Raises:
            KeyError: If no report has that name
        """
        method = getattr(self, name.replace("-", "_"), None)
        if name not in reports.REPORTS or method is None:
            raise KeyError(f"Unknown report '{name}'. Valid: {sorted(reports.REPORTS)}")
        accepted = _PARAMS.get(name, ())
        kwargs = {k: v for k, v in params.items() if k in accepted and v is not None}
        rows = method(**kwargs)
        logger.debug(f"Report {name} returned {len(rows)} row(s)")
        return rows

    def orders_per_account(self) -> List[reports.AccountOrders]:
        return reports.orders_per_account(self.snapshot())

    def sellers_linked(self) -> List[reports.SellerSupplierPair]:
        return reports.sellers_linked_as_suppliers(self.snapshot())

    def sellers_by_name(self) -> List[reports.SellerSupplierPair]:
        return reports.sellers_matching_supplier_names(self.snapshot())

    def catalog(self) -> List[reports.CatalogRow]:
        return reports.product_catalog(self.snapshot())

    def supplier_products(self) -> List[reports.SupplierProductRow]:
        return reports.supplier_product_fanout(self.snapshot())

    def orders_above(self, threshold: Decimal | int | str = 0) -> List[reports.OrderTotalRow]:
        return reports.orders_above_total(self.snapshot(), threshold)

    def top_spenders(self, limit: Optional[int] = None) -> List[reports.AccountSpend]:
        n = self._settings.top_spenders_limit if limit is None else limit
        return reports.top_spenders(self.snapshot(), n)

    def low_stock(self, threshold: Optional[int] = None) -> List[reports.LowStockRow]:
        if threshold is None:
            threshold = self._settings.low_stock_threshold
        return reports.low_stock(self.snapshot(), int(threshold))

    def deliveries(self) -> List[reports.OrderDeliveryRow]:
        return reports.order_deliveries(self.snapshot())

    def supplier_revenue(self) -> List[reports.SupplierRevenue]:
        return reports.supplier_revenue(self.snapshot())

    def item_stats(self) -> List[reports.OrderItemStats]:
        return reports.order_item_stats(self.snapshot())

    def latest_orders(self) -> List[reports.LatestOrder]:
        return reports.latest_order_per_account(self.snapshot())

    def orders_by_type(
        self, account_type: AccountType | str = AccountType.INDIVIDUAL
    ) -> List[reports.AccountOrderCount]:
        return reports.order_counts_for_type(self.snapshot(), account_type)

    def unpaid_orders(self) -> List[reports.OrderSummary]:
        return reports.orders_without_payment_method(self.snapshot())

    def order_charges(self) -> List[reports.OrderCharges]:
        return reports.orders_with_charges(
            self.snapshot(),
            tax_rate=self._settings.tax_rate,
            shipping_fee=self._settings.shipping_fee,
        )


_PARAMS = {
    "orders-above": ("threshold",),
    "top-spenders": ("limit",),
    "low-stock": ("threshold",),
    "orders-by-type": ("account_type",),
}
