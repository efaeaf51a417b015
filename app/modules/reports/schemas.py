from pydantic import BaseModel
from typing import List, Dict, Optional
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal

from app.modules.payments.schemas import DrawerOut


class Totals(BaseModel):
    count: int = 0
    revenue: Decimal = Decimal("0")


class ItemSales(BaseModel):
    product: str
    product_name: Optional[str] = None
    quantity: Decimal
    revenue: Decimal


class DailyReport(BaseModel):
    date: date
    sales_count: int
    revenue: Decimal
    vat: Decimal
    average_sale: Decimal
    by_payment_method: Dict[str, Totals]
    by_order_type: Dict[str, Totals]
    top_items: List[ItemSales]
    expenses: Decimal
    net: Decimal


class DaySeries(BaseModel):
    date: date
    sales_count: int
    revenue: Decimal
    vat: Decimal


class MonthlyReport(BaseModel):
    year: int
    month: int
    sales_count: int
    revenue: Decimal
    vat: Decimal
    average_sale: Decimal
    daily: List[DaySeries]
    expenses: Decimal
    net: Decimal


class ProfitReport(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    revenue: Decimal
    revenue_excluding_vat: Decimal
    vat: Decimal
    cost_of_goods: Decimal
    gross_profit: Decimal
    gross_margin: Decimal
    expenses: Decimal
    net_profit: Decimal


class RecentSale(BaseModel):
    id: UUID
    sale_number: str
    total_amount: Decimal
    payment_method: str
    order_type: str
    cashier_name: Optional[str] = None
    sale_date: datetime


class LowStockItem(BaseModel):
    id: UUID
    name: str
    current_stock: Decimal
    reorder_level: Decimal
    unit: str


class Dashboard(BaseModel):
    today: Totals
    month: Totals
    low_stock_ingredients: List[LowStockItem]
    low_stock_products: List[LowStockItem]
    recent_sales: List[RecentSale]
    open_drawers: List[DrawerOut]
