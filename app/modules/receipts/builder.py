"""
Receipt layout: a language-aware template dictionary built from a sale,
and its plain text and HTML renderings.
"""
from pathlib import Path
from typing import Dict, Any, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import settings
from app.common.utils import to_decimal
from app.modules.receipts.languages import (
    language_table, resolve_language, format_currency, format_date, format_time
)

LINE_WIDTH = 48
NAME_WIDTH = 25
QTY_WIDTH = 8
AMOUNT_WIDTH = 15
LABEL_WIDTH = LINE_WIDTH - AMOUNT_WIDTH

TITLE_KEYS = {
    "duplicate": "duplicate_receipt",
    "refund": "refund_receipt",
    "digital": "digital_receipt",
}

_jinja_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html", "xml"])
)


def _value(sale, field, default=None):
    if isinstance(sale, dict):
        return sale.get(field, default)
    return getattr(sale, field, default)


def _enum_value(value):
    return getattr(value, "value", value)


def _quantity(value) -> str:
    quantity = to_decimal(value)
    return str(quantity.to_integral()) if quantity == quantity.to_integral() else str(quantity.normalize())


class ReceiptTemplateBuilder:
    """Builds the receipt template for one sale in one language"""

    def __init__(self, language: str = "english"):
        self.language = resolve_language(language)
        self.t = language_table(self.language)

    def _money(self, amount) -> str:
        return format_currency(amount, self.language)

    def header(self, receipt_type: str) -> Dict[str, Any]:
        return {"title": self.t[TITLE_KEYS.get(receipt_type, "receipt_title")], "type": receipt_type}

    def company_info(self) -> Dict[str, Any]:
        return {
            "name": settings.RESTAURANT_NAME or self.t["company_name"],
            "address": settings.RESTAURANT_ADDRESS or self.t["company_address"],
            "phone": settings.RESTAURANT_PHONE or self.t["company_phone"],
            "email": settings.RESTAURANT_EMAIL or self.t["company_email"],
            "vat_number": settings.RESTAURANT_VAT_NUMBER or self.t["vat_number"],
        }

    def receipt_info(self, sale, receipt_number: Optional[str]) -> Dict[str, Any]:
        order_type = _enum_value(_value(sale, "order_type")) or "takeaway"
        when = _value(sale, "sale_date") or _value(sale, "created_at")
        info = {
            "receipt_no": receipt_number or "N/A",
            "sale_no": _value(sale, "sale_number"),
            "date": format_date(when, self.language),
            "time": format_time(when, self.language),
            "order_type": self.t.get(order_type, order_type),
            "cashier": _value(sale, "cashier_name"),
        }
        if order_type == "dine-in":
            info["table_no"] = _value(sale, "table_number") or "N/A"
        return info

    def items(self, sale) -> list:
        rows = []
        for item in _value(sale, "items") or []:
            quantity = to_decimal(item.get("quantity"))
            unit_price = to_decimal(item.get("unit_price"))
            total = quantity * unit_price
            rows.append({
                "name": item.get("product_name") or item.get("name") or "",
                "quantity": _quantity(quantity),
                "unit_price": self._money(unit_price),
                "total": self._money(total),
                "raw_total": float(total),
            })
        return rows

    def calculations(self, sale) -> Dict[str, Any]:
        rate = to_decimal(_value(sale, "vat_rate") or settings.VAT_RATE)
        calculations = {
            "subtotal": {
                "label": self.t["subtotal"],
                "amount": self._money(_value(sale, "subtotal")),
                "raw_amount": float(to_decimal(_value(sale, "subtotal"))),
            },
            "vat": {
                "label": f"{self.t['vat']} ({rate * 100:.2f}%)",
                "amount": self._money(_value(sale, "vat_amount")),
                "raw_amount": float(to_decimal(_value(sale, "vat_amount"))),
            },
            "total": {
                "label": self.t["total_amount"],
                "amount": self._money(_value(sale, "total_amount")),
                "raw_amount": float(to_decimal(_value(sale, "total_amount"))),
            },
        }
        service_charge = to_decimal(_value(sale, "service_charge"))
        if service_charge > 0:
            calculations["service_charge"] = {
                "label": self.t["service_charge"],
                "amount": self._money(service_charge),
                "raw_amount": float(service_charge),
            }
        return calculations

    def payment_info(self, sale) -> Dict[str, Any]:
        method = _enum_value(_value(sale, "payment_method")) or "cash"
        info = {
            "method": {"label": self.t["payment_method"], "value": self.t.get(method, method)},
            "amount_paid": {
                "label": self.t["amount_paid"],
                "amount": self._money(_value(sale, "amount_paid")),
                "raw_amount": float(to_decimal(_value(sale, "amount_paid"))),
            },
        }
        change = to_decimal(_value(sale, "change_given"))
        if method == "cash" and change > 0:
            info["change"] = {"label": self.t["change"], "amount": self._money(change), "raw_amount": float(change)}
        return info

    def footer(self, receipt_type: str) -> Dict[str, Any]:
        return {
            "thank_you": self.t["thank_you"],
            "powered_by": self.t["powered_by"],
            "terms": self.t["terms_and_conditions"],
            "refund_policy": self.t["no_refund"],
            "copy": self.t["customer_copy"] if receipt_type == "original" else self.t["merchant_copy"],
        }

    def build(self, sale, receipt_type: str = "original", receipt_number: Optional[str] = None) -> Dict[str, Any]:
        template = {
            "language": self.language,
            "header": self.header(receipt_type),
            "company_info": self.company_info(),
            "receipt_info": self.receipt_info(sale, receipt_number),
            "items": self.items(sale),
            "calculations": self.calculations(sale),
            "payment_info": self.payment_info(sale),
            "footer": self.footer(receipt_type),
            "special_notes": _value(sale, "notes") or None,
        }
        if _enum_value(_value(sale, "order_type")) == "delivery":
            template["delivery_info"] = {
                "customer": _value(sale, "customer_name") or "N/A",
                "address": _value(sale, "delivery_address") or "N/A",
            }
        return template


def _center(text: str) -> str:
    return text.center(LINE_WIDTH).rstrip()


def _amount_row(label: str, amount: str) -> str:
    return label[:LABEL_WIDTH].ljust(LABEL_WIDTH) + amount.rjust(AMOUNT_WIDTH)


def render_plain_text(template: Dict[str, Any]) -> str:
    """Fixed-width rendering for 80mm thermal printers"""
    company = template["company_info"]
    info = template["receipt_info"]
    calculations = template["calculations"]
    payment = template["payment_info"]
    footer = template["footer"]
    rule, thin = "=" * LINE_WIDTH, "-" * LINE_WIDTH

    lines = [
        rule,
        _center(company["name"].upper()),
        _center(company["address"]),
        _center(company["phone"]),
        _center(company["email"]),
        _center(company["vat_number"]),
        rule,
        _center(template["header"]["title"].upper()),
        rule,
        f"{info['date']} {info['time']}",
        f"Receipt No: {info['receipt_no']}",
        f"Sale No: {info['sale_no']}",
        f"Order Type: {info['order_type']}",
    ]
    if info.get("table_no"):
        lines.append(f"Table No: {info['table_no']}")
    lines.append(f"Cashier: {info['cashier']}")
    lines.append(thin)

    lines.append("Item".ljust(NAME_WIDTH) + "Qty".ljust(QTY_WIDTH) + "Total".rjust(AMOUNT_WIDTH))
    lines.append(thin)
    for item in template["items"]:
        lines.append(
            item["name"][:NAME_WIDTH].ljust(NAME_WIDTH)
            + str(item["quantity"]).ljust(QTY_WIDTH)
            + item["total"].rjust(AMOUNT_WIDTH)
        )
    lines.append(thin)

    lines.append(_amount_row(calculations["subtotal"]["label"], calculations["subtotal"]["amount"]))
    if "service_charge" in calculations:
        lines.append(_amount_row(calculations["service_charge"]["label"], calculations["service_charge"]["amount"]))
    lines.append(_amount_row(calculations["vat"]["label"], calculations["vat"]["amount"]))
    lines.append(rule)
    lines.append(_amount_row(calculations["total"]["label"].upper(), calculations["total"]["amount"]))
    lines.append(rule)

    lines.append("")
    lines.append(f"{payment['method']['label']}: {payment['method']['value']}")
    lines.append(f"{payment['amount_paid']['label']}: {payment['amount_paid']['amount']}")
    if "change" in payment:
        lines.append(f"{payment['change']['label']}: {payment['change']['amount']}")

    if template.get("delivery_info"):
        lines.append(thin)
        lines.append(f"Deliver to: {template['delivery_info']['customer']}")
        lines.append(f"Address: {template['delivery_info']['address']}")

    if template.get("special_notes"):
        lines.append("")
        lines.append(thin)
        lines.append(f"Notes: {template['special_notes']}")

    lines.extend([
        "",
        rule,
        _center(footer["thank_you"].upper()),
        _center(footer["powered_by"]),
        "",
        footer["terms"],
        footer["refund_policy"],
        _center(footer["copy"]),
        rule,
    ])
    return "\n".join(lines) + "\n"


def render_html(template: Dict[str, Any]) -> str:
    return _jinja_env.get_template("receipt.html").render(receipt=template)
