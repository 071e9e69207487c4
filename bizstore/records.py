from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field

OrderStatus = Literal["pending", "completed", "cancelled"]
PaymentMethod = Literal["card", "cash", "transfer"]
ExpenseCategory = Literal["advertising", "logistics", "office", "inventory", "other"]
TaxType = Literal["esv", "single_tax", "other"]


class StoredRecord(BaseModel):
    """
    Base for records persisted through the document store.

    Unknown fields are kept so documents written by other clients round-trip.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    userId: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]):
        return cls.model_validate(dict(doc))

    def to_doc(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"id", "createdAt", "updatedAt"})


class OrderItem(BaseModel):
    id: str
    name: str
    sku: str | None = None
    quantity: int = 1
    unitPrice: float = 0
    totalPrice: float = 0
    category: str | None = None


class OrderRecord(StoredRecord):
    date: str
    amount: float
    marketplace: str
    customerName: str
    customerEmail: str | None = None
    status: OrderStatus = "pending"
    items: list[OrderItem] = Field(default_factory=list)
    commission: float = 0
    netAmount: float = 0
    paymentMethod: PaymentMethod = "card"
    notes: str | None = None


class ExpenseRecord(StoredRecord):
    date: str
    category: ExpenseCategory = "other"
    description: str
    amount: float
    receipt: str | None = None
    isTaxDeductible: bool = False
    vendor: str | None = None


class TaxRecord(StoredRecord):
    type: TaxType
    period: str  # YYYY-MM
    amount: float
    dueDate: str
    isPaid: bool = False
    paymentDate: str | None = None
    receipt: str | None = None
    notes: str | None = None


class CustomerRecord(StoredRecord):
    name: str
    email: str
    phone: str | None = None
    totalSpent: float = 0
    ordersCount: int = 0
    lastOrderDate: str | None = None
    firstOrderDate: str | None = None
    notes: str | None = None


class NewCustomer(BaseModel):
    name: str
    email: str
    phone: str | None = None
    notes: str | None = None


class BusinessMetrics(BaseModel):
    revenue: float = 0
    expenses: float = 0
    profit: float = 0
    ordersCount: int = 0
    averageOrderValue: float = 0
    customerCount: int = 0
    taxObligations: float = 0
    cashFlow: float = 0


class MarketplacePerformance(BaseModel):
    name: str
    revenue: float
    orders: int
    averageOrder: float
    commission: float
    netRevenue: float
    lastOrderDate: str


class ProfitPoint(BaseModel):
    date: str  # YYYY-MM
    profit: float
