from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, TypeVar

from pydantic import ValidationError

from .errors import DocumentNotFoundError, DocumentStoreError, MalformedDataError
from .records import (
    BusinessMetrics,
    CustomerRecord,
    ExpenseRecord,
    MarketplacePerformance,
    NewCustomer,
    OrderRecord,
    ProfitPoint,
    StoredRecord,
    TaxRecord,
)
from .store import DocumentStore, format_timestamp, utc_now

logger = logging.getLogger(__name__)

ORDERS = "orders"
EXPENSES = "expenses"
TAXES = "taxes"
CUSTOMERS = "customers"

R = TypeVar("R", bound=StoredRecord)


def _owned_by(user_id: str) -> list[dict[str, Any]]:
    return [{"field": "userId", "operator": "==", "value": user_id}]


class BusinessDataRepository:
    """
    Per-user business data (orders, expenses, taxes, customers) on top of a DocumentStore.

    Every record carries the owning `userId`; reads filter on it and writes stamp it.
    Store failures propagate, except for get_business_metrics which falls back to
    zeroed metrics so dashboards render an empty state.
    """

    def __init__(self, store: DocumentStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def _list(self, model: type[R], collection: str, user_id: str, order_by: str) -> list[R]:
        docs = await self._store.query(collection, _owned_by(user_id), order_by)
        return [self._to_record(model, collection, d) for d in docs]

    @staticmethod
    def _to_record(model: type[R], collection: str, doc: Mapping[str, Any]) -> R:
        try:
            return model.from_doc(doc)
        except ValidationError as e:
            raise MalformedDataError(
                f"document {doc.get('id')!r} in {collection!r} does not match {model.__name__}"
            ) from e

    async def _add(self, model: type[R], collection: str, user_id: str, payload: dict[str, Any]) -> R:
        payload["userId"] = user_id
        doc_id = await self._store.create(collection, payload)
        return self._to_record(model, collection, await self._store.require(collection, doc_id))

    # ---- orders ----

    async def list_orders(self, user_id: str) -> list[OrderRecord]:
        return await self._list(OrderRecord, ORDERS, user_id, "date")

    async def get_order(self, user_id: str, order_id: str) -> OrderRecord:
        doc = await self._store.require(ORDERS, order_id)
        if doc.get("userId") != user_id:
            raise DocumentNotFoundError(ORDERS, order_id)
        return self._to_record(OrderRecord, ORDERS, doc)

    async def add_order(self, user_id: str, order: OrderRecord) -> OrderRecord:
        created = await self._add(OrderRecord, ORDERS, user_id, order.to_doc())
        logger.info("ORDER ADDED: user=%s id=%s amount=%s", user_id, created.id, created.amount)
        await self._update_customer_stats(user_id, order.customerEmail or "", order.amount)
        return created

    async def update_order(self, user_id: str, order_id: str, updates: Mapping[str, Any]) -> bool:
        doc = await self._store.get(ORDERS, order_id)
        if doc is None or doc.get("userId") != user_id:
            return False
        patch = {k: v for k, v in updates.items() if k != "userId"}
        try:
            OrderRecord.from_doc({**doc, **patch})
        except ValidationError as e:
            raise ValueError(f"update would leave order {order_id!r} invalid") from e
        return await self._store.update(ORDERS, order_id, patch)

    # ---- expenses ----

    async def list_expenses(self, user_id: str) -> list[ExpenseRecord]:
        return await self._list(ExpenseRecord, EXPENSES, user_id, "date")

    async def add_expense(self, user_id: str, expense: ExpenseRecord) -> ExpenseRecord:
        created = await self._add(ExpenseRecord, EXPENSES, user_id, expense.to_doc())
        logger.info("EXPENSE ADDED: user=%s id=%s amount=%s", user_id, created.id, created.amount)
        return created

    # ---- taxes ----

    async def list_taxes(self, user_id: str) -> list[TaxRecord]:
        return await self._list(TaxRecord, TAXES, user_id, "dueDate")

    async def add_tax(self, user_id: str, tax: TaxRecord) -> TaxRecord:
        created = await self._add(TaxRecord, TAXES, user_id, tax.to_doc())
        logger.info("TAX ADDED: user=%s id=%s amount=%s", user_id, created.id, created.amount)
        return created

    # ---- customers ----

    async def list_customers(self, user_id: str) -> list[CustomerRecord]:
        return await self._list(CustomerRecord, CUSTOMERS, user_id, "lastOrderDate")

    async def add_customer(self, user_id: str, customer: NewCustomer) -> CustomerRecord:
        now = format_timestamp(self._clock())
        payload = customer.model_dump(mode="json", exclude_none=True)
        payload.update(totalSpent=0, ordersCount=0, firstOrderDate=now, lastOrderDate=now)
        created = await self._add(CustomerRecord, CUSTOMERS, user_id, payload)
        logger.info("CUSTOMER ADDED: user=%s id=%s", user_id, created.id)
        return created

    async def _update_customer_stats(self, user_id: str, email: str, order_amount: float) -> None:
        """
        Bump the matching customer's totals after an order.

        Failures are logged, not raised; the order is already stored. Concurrent
        orders for the same customer can lose an increment.
        """
        if not email:
            return
        try:
            matches = await self._store.query(
                CUSTOMERS,
                [*_owned_by(user_id), {"field": "email", "operator": "==", "value": email}],
                limit=1,
            )
            if not matches:
                return
            customer = self._to_record(CustomerRecord, CUSTOMERS, matches[0])
            await self._store.update(
                CUSTOMERS,
                customer.id or "",
                {
                    "totalSpent": customer.totalSpent + order_amount,
                    "ordersCount": customer.ordersCount + 1,
                    "lastOrderDate": format_timestamp(self._clock()),
                },
            )
        except DocumentStoreError:
            logger.warning("CUSTOMER STATS: failed to update stats for %s", email, exc_info=True)

    # ---- analytics ----

    async def get_business_metrics(self, user_id: str) -> BusinessMetrics:
        try:
            orders = await self.list_orders(user_id)
            expenses = await self.list_expenses(user_id)
            taxes = await self.list_taxes(user_id)
            customers = await self.list_customers(user_id)
        except DocumentStoreError:
            logger.exception("METRICS: failed to load business data for %s; returning zeroed metrics", user_id)
            return BusinessMetrics()

        completed = [o for o in orders if o.status == "completed"]
        revenue = sum(o.netAmount for o in completed)
        total_expenses = sum(e.amount for e in expenses)
        tax_obligations = sum(t.amount for t in taxes if not t.isPaid)
        orders_count = len(completed)

        return BusinessMetrics(
            revenue=revenue,
            expenses=total_expenses,
            profit=revenue - total_expenses - tax_obligations,
            ordersCount=orders_count,
            averageOrderValue=revenue / orders_count if orders_count else 0,
            customerCount=len(customers),
            taxObligations=tax_obligations,
            cashFlow=revenue - total_expenses,
        )

    async def get_marketplace_performance(self, user_id: str) -> list[MarketplacePerformance]:
        by_name: dict[str, MarketplacePerformance] = {}
        for order in await self.list_orders(user_id):
            if order.status != "completed":
                continue
            perf = by_name.get(order.marketplace)
            if perf is None:
                by_name[order.marketplace] = MarketplacePerformance(
                    name=order.marketplace,
                    revenue=order.netAmount,
                    orders=1,
                    averageOrder=order.netAmount,
                    commission=order.commission,
                    netRevenue=order.netAmount - order.commission,
                    lastOrderDate=order.date,
                )
                continue
            perf.revenue += order.netAmount
            perf.orders += 1
            perf.commission += order.commission
            perf.netRevenue += order.netAmount - order.commission
            perf.lastOrderDate = max(perf.lastOrderDate, order.date)

        for perf in by_name.values():
            perf.averageOrder = perf.revenue / perf.orders
        return list(by_name.values())

    async def get_profit_trends(self, user_id: str) -> list[ProfitPoint]:
        """Monthly (YYYY-MM) completed-order revenue minus expenses, oldest first."""
        monthly: dict[str, list[float]] = {}
        for order in await self.list_orders(user_id):
            if order.status == "completed":
                monthly.setdefault(order.date[:7], [0.0, 0.0])[0] += order.netAmount
        for expense in await self.list_expenses(user_id):
            monthly.setdefault(expense.date[:7], [0.0, 0.0])[1] += expense.amount

        return [
            ProfitPoint(date=month, profit=revenue - spent)
            for month, (revenue, spent) in sorted(monthly.items())
        ]
