"""
Business reports over recorded sales and expenses.

Nothing here writes. Cancelled and voided sales are left out of every
figure; line level figures come from the item snapshot stored on each
sale, so they reflect prices and costs at the time of sale.
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any
import calendar
import logging

from app.common.utils import utc_now, to_decimal, money, date_range_bounds
from app.modules.sales.models import Sale, SaleStatus, OrderType, PaymentMethod
from app.modules.expenses.service import ExpenseService
from app.modules.inventory.models import Ingredient
from app.modules.products.models import Product
from app.modules.payments.models import CashDrawer, DrawerStatus

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (SaleStatus.CANCELLED, SaleStatus.VOIDED)

BEST_SELLING_CSV_HEADERS = {
    "product": "Item ID",
    "product_name": "Item",
    "quantity": "Quantity Sold",
    "revenue": "Revenue",
}


def _totals() -> Dict[str, Any]:
    return {"count": 0, "revenue": Decimal("0")}


def _average(total: Decimal, count: int) -> Decimal:
    return money(total / count) if count else Decimal("0.00")


def rank_items(sales: List[Sale], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Line items summed per item across sales, by quantity then revenue."""
    items: Dict[str, Dict[str, Any]] = {}
    for sale in sales:
        for line in sale.items or []:
            key = line.get("product") or line.get("product_name")
            entry = items.setdefault(key, {
                "product": key,
                "product_name": line.get("product_name"),
                "quantity": Decimal("0"),
                "revenue": Decimal("0"),
            })
            entry["quantity"] += to_decimal(line.get("quantity"))
            entry["revenue"] += to_decimal(line.get("subtotal"))
    ranked = sorted(items.values(), key=lambda i: (i["quantity"], i["revenue"]), reverse=True)
    for entry in ranked:
        entry["revenue"] = money(entry["revenue"])
    return ranked[:limit] if limit else ranked


class ReportService:
    """Daily, monthly, profit, best-selling and dashboard reports"""

    def __init__(self, db: Session):
        self.db = db
        self.expenses = ExpenseService(db)

    def _sales(self, start: Optional[datetime], end: Optional[datetime]) -> List[Sale]:
        query = self.db.query(Sale).filter(Sale.status.notin_(CLOSED_STATUSES))
        if start:
            query = query.filter(Sale.sale_date >= start)
        if end:
            query = query.filter(Sale.sale_date < end)
        return query.order_by(Sale.sale_date.asc()).all()

    def daily(self, day: Optional[date] = None) -> Dict[str, Any]:
        day = day or utc_now().date()
        start, end = date_range_bounds(day, day)
        sales = self._sales(start, end)

        by_payment_method = {m.value: _totals() for m in PaymentMethod}
        by_order_type = {t.value: _totals() for t in OrderType}
        revenue = Decimal("0")
        vat = Decimal("0")
        for sale in sales:
            total = to_decimal(sale.total_amount)
            revenue += total
            vat += to_decimal(sale.vat_amount)
            for bucket in (by_payment_method[sale.payment_method.value], by_order_type[sale.order_type.value]):
                bucket["count"] += 1
                bucket["revenue"] += total

        expenses = self.expenses.total(day, day)
        return {
            "date": day,
            "sales_count": len(sales),
            "revenue": money(revenue),
            "vat": money(vat),
            "average_sale": _average(revenue, len(sales)),
            "by_payment_method": by_payment_method,
            "by_order_type": by_order_type,
            "top_items": rank_items(sales, 5),
            "expenses": expenses,
            "net": money(revenue - vat - expenses),
        }

    def monthly(self, year: int, month: int) -> Dict[str, Any]:
        if not 1 <= month <= 12:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Month must be between 1 and 12")
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])
        start, end = date_range_bounds(first, last)
        sales = self._sales(start, end)

        days = {first + timedelta(days=n): {"sales_count": 0, "revenue": Decimal("0"), "vat": Decimal("0")}
                for n in range(last.day)}
        revenue = Decimal("0")
        vat = Decimal("0")
        for sale in sales:
            entry = days[sale.sale_date.date()]
            entry["sales_count"] += 1
            entry["revenue"] += to_decimal(sale.total_amount)
            entry["vat"] += to_decimal(sale.vat_amount)
            revenue += to_decimal(sale.total_amount)
            vat += to_decimal(sale.vat_amount)

        expenses = self.expenses.total(first, last)
        return {
            "year": year,
            "month": month,
            "sales_count": len(sales),
            "revenue": money(revenue),
            "vat": money(vat),
            "average_sale": _average(revenue, len(sales)),
            "daily": [
                {"date": day, "sales_count": e["sales_count"], "revenue": money(e["revenue"]), "vat": money(e["vat"])}
                for day, e in days.items()
            ],
            "expenses": expenses,
            "net": money(revenue - vat - expenses),
        }

    def profit(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict[str, Any]:
        """
        Gross and net profit.

        Cost of goods is cost_price * quantity from each sale line; lines
        recorded without a cost count as zero.
        """
        sales = self._sales(*date_range_bounds(start_date, end_date))
        revenue = sum((to_decimal(s.total_amount) for s in sales), Decimal("0"))
        vat = sum((to_decimal(s.vat_amount) for s in sales), Decimal("0"))
        cost_of_goods = sum(
            (to_decimal(line.get("cost_price")) * to_decimal(line.get("quantity"))
             for s in sales for line in (s.items or [])),
            Decimal("0")
        )
        revenue_ex_vat = revenue - vat
        gross_profit = revenue_ex_vat - cost_of_goods
        expenses = self.expenses.total(start_date, end_date)
        return {
            "start_date": start_date,
            "end_date": end_date,
            "revenue": money(revenue),
            "revenue_excluding_vat": money(revenue_ex_vat),
            "vat": money(vat),
            "cost_of_goods": money(cost_of_goods),
            "gross_profit": money(gross_profit),
            "gross_margin": money(gross_profit / revenue_ex_vat * 100) if revenue_ex_vat else Decimal("0.00"),
            "expenses": expenses,
            "net_profit": money(gross_profit - expenses),
        }

    def best_selling(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                     limit: int = 10) -> List[Dict[str, Any]]:
        return rank_items(self._sales(*date_range_bounds(start_date, end_date)), limit)

    def dashboard(self) -> Dict[str, Any]:
        today = utc_now().date()
        month_start = today.replace(day=1)

        today_sales = self._sales(*date_range_bounds(today, today))
        month_sales = self._sales(*date_range_bounds(month_start, today))

        ingredients = (
            self.db.query(Ingredient)
            .filter(Ingredient.is_active.is_(True), Ingredient.current_stock <= Ingredient.reorder_level)
            .order_by(Ingredient.name)
            .all()
        )
        products = [
            p for p in self.db.query(Product).filter(Product.is_active.is_(True)).order_by(Product.name).all()
            if p.is_low_stock
        ]
        recent = (
            self.db.query(Sale)
            .order_by(Sale.sale_date.desc())
            .limit(10)
            .all()
        )
        drawers = self.db.query(CashDrawer).filter(CashDrawer.status == DrawerStatus.OPEN).all()

        return {
            "today": {
                "count": len(today_sales),
                "revenue": money(sum((to_decimal(s.total_amount) for s in today_sales), Decimal("0"))),
            },
            "month": {
                "count": len(month_sales),
                "revenue": money(sum((to_decimal(s.total_amount) for s in month_sales), Decimal("0"))),
            },
            "low_stock_ingredients": [
                {"id": i.id, "name": i.name, "current_stock": i.current_stock,
                 "reorder_level": i.reorder_level, "unit": i.unit}
                for i in ingredients
            ],
            "low_stock_products": [
                {"id": p.id, "name": p.name, "current_stock": p.stock_quantity,
                 "reorder_level": p.reorder_level, "unit": p.unit}
                for p in products
            ],
            "recent_sales": [
                {"id": s.id, "sale_number": s.sale_number, "total_amount": s.total_amount,
                 "payment_method": s.payment_method.value, "order_type": s.order_type.value,
                 "cashier_name": s.cashier_name, "sale_date": s.sale_date}
                for s in recent
            ],
            "open_drawers": drawers,
        }
