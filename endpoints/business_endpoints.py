from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, model_validator

from bizstore.records import (
    BusinessMetrics,
    CustomerRecord,
    ExpenseRecord,
    MarketplacePerformance,
    NewCustomer,
    OrderItem,
    OrderRecord,
    OrderStatus,
    PaymentMethod,
    ProfitPoint,
    TaxRecord,
)
from bizstore.repositories import BusinessDataRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_repository(request: Request) -> BusinessDataRepository:
    return request.app.state.business


def get_user_id(request: Request) -> str:
    header = request.app.state.settings.user_id_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"{header} header is required")
    return user_id


Repo = Annotated[BusinessDataRepository, Depends(get_repository)]
UserId = Annotated[str, Depends(get_user_id)]


# Order fields a PATCH may clear; everything else must keep a value.
NULLABLE_ORDER_FIELDS = frozenset({"customerEmail", "notes"})


class OrderUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: str | None = None
    amount: float | None = None
    marketplace: str | None = None
    customerName: str | None = None
    customerEmail: str | None = None
    status: OrderStatus | None = None
    items: list[OrderItem] | None = None
    commission: float | None = None
    netAmount: float | None = None
    paymentMethod: PaymentMethod | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _reject_nulls_for_required_fields(self):
        nulled = sorted(k for k in self.model_fields_set - NULLABLE_ORDER_FIELDS if getattr(self, k) is None)
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self


@router.get("/metrics", response_model=BusinessMetrics)
async def business_metrics(repo: Repo, user_id: UserId):
    return await repo.get_business_metrics(user_id)


@router.get("/orders", response_model=list[OrderRecord])
async def list_orders(repo: Repo, user_id: UserId):
    return await repo.list_orders(user_id)


@router.post("/orders", response_model=OrderRecord)
async def add_order(order: OrderRecord, repo: Repo, user_id: UserId):
    return await repo.add_order(user_id, order)


@router.get("/orders/{order_id}", response_model=OrderRecord)
async def get_order(order_id: str, repo: Repo, user_id: UserId):
    return await repo.get_order(user_id, order_id)


@router.patch("/orders/{order_id}")
async def update_order(order_id: str, updates: OrderUpdate, repo: Repo, user_id: UserId):
    patch = updates.model_dump(mode="json", exclude_unset=True)
    try:
        updated = await repo.update_order(user_id, order_id, patch)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if not updated:
        logger.info("ORDER UPDATE: %s not found for user %s", order_id, user_id)
        raise HTTPException(status_code=404, detail="order not found")
    return {"updated": True, "id": order_id}


@router.get("/expenses", response_model=list[ExpenseRecord])
async def list_expenses(repo: Repo, user_id: UserId):
    return await repo.list_expenses(user_id)


@router.post("/expenses", response_model=ExpenseRecord)
async def add_expense(expense: ExpenseRecord, repo: Repo, user_id: UserId):
    return await repo.add_expense(user_id, expense)


@router.get("/taxes", response_model=list[TaxRecord])
async def list_taxes(repo: Repo, user_id: UserId):
    return await repo.list_taxes(user_id)


@router.post("/taxes", response_model=TaxRecord)
async def add_tax(tax: TaxRecord, repo: Repo, user_id: UserId):
    return await repo.add_tax(user_id, tax)


@router.get("/customers", response_model=list[CustomerRecord])
async def list_customers(repo: Repo, user_id: UserId):
    return await repo.list_customers(user_id)


@router.post("/customers", response_model=CustomerRecord)
async def add_customer(customer: NewCustomer, repo: Repo, user_id: UserId):
    return await repo.add_customer(user_id, customer)


@router.get("/marketplaces", response_model=list[MarketplacePerformance])
async def marketplace_performance(repo: Repo, user_id: UserId):
    return await repo.get_marketplace_performance(user_id)


@router.get("/profit-trends", response_model=list[ProfitPoint])
async def profit_trends(repo: Repo, user_id: UserId):
    return await repo.get_profit_trends(user_id)
