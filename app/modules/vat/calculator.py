"""
VAT arithmetic for bills, lines and reports.

The calculator is pure: it works on a VATConfig and already-resolved
catalogue items and never touches the database. All arithmetic is done
in Decimal.
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING, ROUND_FLOOR
from typing import List, Dict, Optional, Tuple, Any

from app.common.utils import to_decimal
from app.modules.vat.schemas import VATConfig, CalculationMethodEnum, RoundingMethodEnum

TOLERANCE = Decimal("0.01")

_ROUNDING = {
    RoundingMethodEnum.NEAREST: ROUND_HALF_UP,
    RoundingMethodEnum.UP: ROUND_CEILING,
    RoundingMethodEnum.DOWN: ROUND_FLOOR,
}


def _category(item) -> Optional[str]:
    category = getattr(item, "category", None)
    return getattr(category, "value", category)


class VATCalculator:
    """Helper to compute VAT under one VAT configuration"""

    def __init__(self, config: VATConfig):
        self.config = config

    @staticmethod
    def round_amount(amount, method: RoundingMethodEnum = RoundingMethodEnum.NEAREST, precision: int = 2) -> Decimal:
        amount = to_decimal(amount)
        if method == RoundingMethodEnum.NONE:
            return amount
        if method not in _ROUNDING:
            raise ValueError(f"Unknown rounding method: {method}")
        return amount.quantize(Decimal(1).scaleb(-precision), rounding=_ROUNDING[method])

    def _round(self, amount) -> Decimal:
        return self.round_amount(amount, self.config.rounding_method, self.config.rounding_precision)

    def product_rate(self, item) -> Decimal:
        """Rate for a product or menu item; 0 when disabled, untaxed or exempt."""
        config = self.config
        if not config.is_enabled or not getattr(item, "taxable", True):
            return Decimal("0")
        category = _category(item)
        if category and category in config.exempt_categories:
            return Decimal("0")
        if str(getattr(item, "id", "")) in config.exempt_products:
            return Decimal("0")
        if config.calculation_method == CalculationMethodEnum.SPLIT_RATE and category in config.category_rates:
            return to_decimal(config.category_rates[category])
        return to_decimal(config.default_rate)

    def tiered_rate(self, amount) -> Decimal:
        amount = to_decimal(amount)
        for tier in self.config.tiered_rates:
            if amount >= to_decimal(tier.min) and (tier.max is None or amount < tier.max):
                return to_decimal(tier.rate)
        return to_decimal(self.config.default_rate)

    def calculate_vat(self, amount, rate=None) -> Decimal:
        amount = to_decimal(amount)
        if rate is not None:
            effective = to_decimal(rate)
        elif self.config.calculation_method == CalculationMethodEnum.TIERED:
            effective = self.tiered_rate(amount)
        else:
            effective = to_decimal(self.config.default_rate)
        return self._round(amount * effective)

    def total_with_vat(self, amount, rate=None) -> Decimal:
        return self._round(to_decimal(amount) + self.calculate_vat(amount, rate))

    def extract_vat_from_total(self, total, rate=None) -> Decimal:
        r = to_decimal(rate if rate is not None else self.config.default_rate)
        return self._round(to_decimal(total) * r / (1 + r))

    def base_from_total(self, total, rate=None) -> Decimal:
        r = to_decimal(rate if rate is not None else self.config.default_rate)
        return self._round(to_decimal(total) / (1 + r))

    def service_charge(self, subtotal) -> Dict[str, Any]:
        if not self.config.enable_service_charge:
            return {"amount": Decimal("0"), "rate": Decimal("0"), "enabled": False}
        rate = to_decimal(self.config.service_charge_rate)
        return {"amount": self._round(to_decimal(subtotal) * rate), "rate": rate, "enabled": True}

    def item_vat(self, line, item, item_type: str) -> Dict[str, Any]:
        """
        VAT for one line against its catalogue item.

        INCLUSIVE prices already contain VAT, so it is backed out of the
        line total; every other method adds VAT on top.
        """
        quantity = to_decimal(line.quantity)
        unit_price = to_decimal(line.unit_price)
        subtotal = self._round(quantity * unit_price)
        rate = self.product_rate(item)
        taxable = rate > 0

        vat_amount = Decimal("0")
        total = subtotal
        if taxable:
            if self.config.calculation_method == CalculationMethodEnum.INCLUSIVE:
                total = subtotal
                subtotal = total / (1 + rate)
                vat_amount = total - subtotal
                subtotal = self._round(subtotal)
            else:
                vat_amount = subtotal * rate
                total = subtotal + vat_amount
            vat_amount = self._round(vat_amount)
            total = self._round(total)

        return {
            "product": str(line.product),
            "product_name": getattr(item, "name", None) or line.product_name,
            "category": _category(item),
            "quantity": quantity,
            "unit_price": unit_price,
            "subtotal": subtotal,
            "vat_amount": vat_amount,
            "vat_rate": rate,
            "total_with_vat": total,
            "taxable": taxable,
            "batch_number": line.batch_number,
            "portion_id": str(line.portion_id) if line.portion_id else None,
            "item_type": item_type,
            "cost_price": to_decimal(getattr(item, "cost_price", 0)),
        }

    def bill_vat(self, resolved: List[Tuple[Any, Any, str]]) -> Dict[str, Any]:
        """
        VAT for a whole bill.

        resolved holds (line, item, item_type) triples. Below the minimum
        taxable amount no VAT is charged.
        """
        if not resolved:
            raise ValueError("Items must be a non-empty list")

        items = []
        subtotal = Decimal("0")
        vat_amount = Decimal("0")
        taxable_subtotal = Decimal("0")
        non_taxable_subtotal = Decimal("0")
        categories: Dict[str, Dict[str, Decimal]] = {}

        for line, item, item_type in resolved:
            result = self.item_vat(line, item, item_type)
            items.append(result)
            subtotal += result["subtotal"]
            vat_amount += result["vat_amount"]
            if result["taxable"]:
                taxable_subtotal += result["subtotal"]
                bucket = categories.setdefault(
                    result["category"] or "uncategorized",
                    {"subtotal": Decimal("0"), "vat_amount": Decimal("0"), "vat_rate": result["vat_rate"]}
                )
                bucket["subtotal"] += result["subtotal"]
                bucket["vat_amount"] += result["vat_amount"]
            else:
                non_taxable_subtotal += result["subtotal"]

        subtotal = self._round(subtotal)
        taxable_subtotal = self._round(taxable_subtotal)
        non_taxable_subtotal = self._round(non_taxable_subtotal)
        vat_amount = self._round(vat_amount)

        service = self.service_charge(subtotal)
        service_charge_vat = Decimal("0")
        if service["enabled"] and self.config.apply_vat_on_service_charge:
            service_charge_vat = self.calculate_vat(service["amount"], self.config.default_rate)

        total = self._round(subtotal + vat_amount + service["amount"] + service_charge_vat)
        if subtotal < to_decimal(self.config.minimum_taxable_amount):
            vat_amount = Decimal("0")
            service_charge_vat = Decimal("0")
            total = subtotal + service["amount"]

        return {
            "items": items,
            "subtotal": subtotal,
            "taxable_subtotal": taxable_subtotal,
            "non_taxable_subtotal": non_taxable_subtotal,
            "vat_amount": vat_amount,
            "vat_rate": to_decimal(self.config.default_rate),
            "service_charge": service["amount"],
            "service_charge_vat": service_charge_vat,
            "total_amount": total,
            "total_items": len(items),
            "calculation_method": self.config.calculation_method.value,
            "category_breakdown": categories,
            "display_label": self.config.display_label,
        }

    def breakdown(self, subtotal, total) -> Dict[str, Any]:
        rate = to_decimal(self.config.default_rate)
        subtotal = to_decimal(subtotal)
        total = to_decimal(total)
        expected_total = self.total_with_vat(subtotal)
        return {
            "subtotal": self.round_amount(subtotal),
            "vat_rate": rate,
            "vat_percentage": f"{rate * 100:.2f}%",
            "vat_amount": self.round_amount(self.calculate_vat(subtotal)),
            "total_amount": self.round_amount(total),
            "expected_total": self.round_amount(expected_total),
            "difference": self.round_amount(total - expected_total),
        }

    def validate(self, subtotal, vat_amount, total_amount, rate=None) -> Dict[str, Any]:
        subtotal = to_decimal(subtotal)
        vat_amount = to_decimal(vat_amount)
        total_amount = to_decimal(total_amount)
        expected_vat = self.calculate_vat(subtotal, rate)
        expected_total = self.round_amount(subtotal + expected_vat)
        vat_difference = abs(vat_amount - expected_vat)
        total_difference = abs(total_amount - expected_total)
        is_valid = vat_difference <= TOLERANCE and total_difference <= TOLERANCE
        return {
            "is_valid": is_valid,
            "expected_vat": self.round_amount(expected_vat),
            "actual_vat": self.round_amount(vat_amount),
            "vat_difference": self.round_amount(vat_difference),
            "expected_total": expected_total,
            "actual_total": self.round_amount(total_amount),
            "total_difference": self.round_amount(total_difference),
            "message": "VAT calculation is valid" if is_valid else "VAT calculation has discrepancies",
        }

    def split_vat(self, split_amount, split_number: int = 1) -> Dict[str, Any]:
        split_amount = to_decimal(split_amount)
        return {
            "split_number": split_number,
            "split_subtotal": self.round_amount(self.base_from_total(split_amount)),
            "split_vat": self.round_amount(self.extract_vat_from_total(split_amount)),
            "split_total": self.round_amount(split_amount),
            "vat_rate": to_decimal(self.config.default_rate),
        }
