"""
VAT reports over recorded sales.

Cancelled and voided sales carry no VAT liability and are left out.
"""
from sqlalchemy.orm import Session
from decimal import Decimal
from datetime import date
from typing import Optional, List, Dict, Any

from app.common.utils import to_decimal, money, date_range_bounds
from app.common.csv_export import create_csv_response
from app.modules.sales.models import Sale, SaleStatus

CSV_HEADERS = {
    "sale_number": "Sale Number",
    "date": "Date",
    "order_type": "Order Type",
    "payment_method": "Payment Method",
    "subtotal": "Subtotal",
    "vat_rate": "VAT Rate",
    "vat_amount": "VAT Amount",
    "total": "Total",
}


def _bucket() -> Dict[str, Any]:
    return {"count": 0, "sales": Decimal("0"), "vat": Decimal("0")}


class VATReportService:

    def __init__(self, db: Session):
        self.db = db

    def _sales(self, start_date: Optional[date], end_date: Optional[date]) -> List[Sale]:
        start, end = date_range_bounds(start_date, end_date)
        query = self.db.query(Sale).filter(Sale.status.notin_([SaleStatus.CANCELLED, SaleStatus.VOIDED]))
        if start:
            query = query.filter(Sale.sale_date >= start)
        if end:
            query = query.filter(Sale.sale_date < end)
        return query.order_by(Sale.sale_date.asc()).all()

    def summary(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        sales = self._sales(start_date, end_date)

        total_sales = Decimal("0")
        taxable_sales = Decimal("0")
        vat_collected = Decimal("0")
        by_order_type: Dict[str, Dict[str, Any]] = {}
        by_payment_method: Dict[str, Dict[str, Any]] = {}
        by_category: Dict[str, Dict[str, Any]] = {}
        daily: Dict[str, Dict[str, Any]] = {}

        for sale in sales:
            total = to_decimal(sale.total_amount)
            vat = to_decimal(sale.vat_amount)
            total_sales += total
            vat_collected += vat

            for key, groups in (
                (sale.order_type.value, by_order_type),
                (sale.payment_method.value, by_payment_method),
                (sale.sale_date.date().isoformat(), daily),
            ):
                bucket = groups.setdefault(key, _bucket())
                bucket["count"] += 1
                bucket["sales"] += total
                bucket["vat"] += vat

            for item in sale.items or []:
                if item.get("taxable"):
                    taxable_sales += to_decimal(item.get("subtotal"))
                bucket = by_category.setdefault(item.get("category") or "uncategorized", _bucket())
                bucket["count"] += 1
                bucket["sales"] += to_decimal(item.get("subtotal"))
                bucket["vat"] += to_decimal(item.get("vat_amount"))

        def rounded(groups):
            return {
                key: {"count": b["count"], "sales": money(b["sales"]), "vat": money(b["vat"])}
                for key, b in groups.items()
            }

        return {
            "start_date": start_date,
            "end_date": end_date,
            "total_sales": money(total_sales),
            "taxable_sales": money(taxable_sales),
            "vat_collected": money(vat_collected),
            "transaction_count": len(sales),
            "by_order_type": rounded(by_order_type),
            "by_payment_method": rounded(by_payment_method),
            "by_category": rounded(by_category),
            "daily_trend": [
                {"date": day, **values} for day, values in sorted(rounded(daily).items())
            ],
        }

    def export_rows(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[dict]:
        return [
            {
                "sale_number": sale.sale_number,
                "date": sale.sale_date,
                "order_type": sale.order_type.value,
                "payment_method": sale.payment_method.value,
                "subtotal": to_decimal(sale.subtotal),
                "vat_rate": f"{to_decimal(sale.vat_rate) * 100:.2f}%",
                "vat_amount": to_decimal(sale.vat_amount),
                "total": to_decimal(sale.total_amount),
            }
            for sale in self._sales(start_date, end_date)
        ]

    def export_csv(self, start_date: Optional[date] = None, end_date: Optional[date] = None):
        label = f"{start_date or 'all'}_{end_date or 'all'}"
        return create_csv_response(self.export_rows(start_date, end_date), f"vat_report_{label}.csv", CSV_HEADERS)
