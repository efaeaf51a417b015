from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from decimal import Decimal
from typing import Optional, List, Tuple, Any
from uuid import UUID
from types import SimpleNamespace
import logging
import time

from app.core.config import settings
from app.common.utils import utc_now, to_decimal
from app.modules.vat.models import VATSettings, CalculationMethod, RoundingMethod
from app.modules.vat.schemas import (
    VATConfig, VATSettingsCreate, VATSettingsUpdate, SaleLineIn, ItemTypeEnum, TestCalculationRequest
)
from app.modules.vat.calculator import VATCalculator
from app.modules.products.models import Product
from app.modules.menu.models import MenuItem

logger = logging.getLogger(__name__)

_settings_cache = {"config": None, "settings_id": None, "expires_at": 0.0}


def clear_vat_settings_cache() -> None:
    _settings_cache.update(config=None, settings_id=None, expires_at=0.0)


def default_vat_config() -> VATConfig:
    return VATConfig(
        is_enabled=True,
        default_rate=to_decimal(settings.VAT_RATE),
        service_charge_rate=Decimal("0.10"),
        enable_service_charge=False,
    )


VAT_PRESETS = {
    "sri_lanka_standard": {
        "name": "Sri Lanka Standard VAT",
        "description": "15% VAT added on top of menu prices",
        "is_enabled": True,
        "default_rate": 0.15,
        "calculation_method": "EXCLUSIVE",
        "display_label": "VAT",
    },
    "sri_lanka_inclusive": {
        "name": "Sri Lanka Inclusive VAT",
        "description": "Menu prices already include 15% VAT",
        "is_enabled": True,
        "default_rate": 0.15,
        "calculation_method": "INCLUSIVE",
        "display_label": "VAT",
    },
    "restaurant_service_charge": {
        "name": "Restaurant with Service Charge",
        "description": "15% VAT plus 10% service charge, VAT applied to the service charge",
        "is_enabled": True,
        "default_rate": 0.15,
        "calculation_method": "EXCLUSIVE",
        "display_label": "VAT",
        "enable_service_charge": True,
        "service_charge_rate": 0.10,
        "apply_vat_on_service_charge": True,
    },
    "zero_rated": {
        "name": "Zero Rated",
        "description": "Registered but charging 0% VAT",
        "is_enabled": True,
        "default_rate": 0.0,
        "calculation_method": "EXCLUSIVE",
        "display_label": "VAT",
    },
}


class VATService:
    """
    Active VAT configuration and VAT for sale lines.

    The active settings row is cached for VAT_CACHE_SECONDS; every
    settings write clears the cache.
    """

    def __init__(self, db: Session):
        self.db = db

    # ===== CONFIGURATION =====

    def _active_row(self) -> Optional[VATSettings]:
        return (
            self.db.query(VATSettings)
            .filter(VATSettings.is_active == True)
            .order_by(VATSettings.effective_date.desc())
            .first()
        )

    def get_config(self) -> VATConfig:
        now = time.monotonic()
        if _settings_cache["config"] is not None and now < _settings_cache["expires_at"]:
            return _settings_cache["config"]

        row = self._active_row()
        if row is None:
            return default_vat_config()

        config = VATConfig.model_validate(row)
        _settings_cache.update(config=config, settings_id=row.id, expires_at=now + settings.VAT_CACHE_SECONDS)
        return config

    def calculator(self) -> VATCalculator:
        return VATCalculator(self.get_config())

    @staticmethod
    def clear_cache() -> None:
        clear_vat_settings_cache()

    # ===== SALE LINES =====

    def _lookup(self, model, item_id: UUID):
        return self.db.query(model).filter(model.id == item_id).first()

    def resolve_lines(self, lines: List[SaleLineIn]) -> List[Tuple[SaleLineIn, Any, str]]:
        """
        Find the catalogue item behind every line.

        The line's item_type decides which table is searched first; the
        other table is the fallback. Any unknown id fails the whole bill.
        """
        resolved = []
        missing = []
        for line in lines:
            order = [(Product, "product"), (MenuItem, "menu-item")]
            if line.item_type == ItemTypeEnum.menu_item:
                order.reverse()
            found = None
            for model, item_type in order:
                item = self._lookup(model, line.product)
                if item is not None:
                    found = (line, item, item_type)
                    break
            if found is None:
                missing.append(str(line.product))
            else:
                resolved.append(found)

        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Items not found in products or menu items: {', '.join(missing)}"
            )
        return resolved

    def bill_vat(self, lines: List[SaleLineIn]) -> dict:
        if not lines:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sale must contain at least one item")
        resolved = self.resolve_lines(lines)
        try:
            return self.calculator().bill_vat(resolved)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    def test_calculation(self, request: TestCalculationRequest) -> dict:
        config = self.get_config()
        calculator = VATCalculator(config)

        item = SimpleNamespace(id=None, taxable=request.taxable, category=request.category)
        rate = calculator.product_rate(item)
        if rate > 0 and config.calculation_method.value == "TIERED":
            rate = calculator.tiered_rate(request.amount)
        vat_amount = calculator.calculate_vat(request.amount, rate)
        service = calculator.service_charge(request.amount)
        service_vat = Decimal("0")
        if service["enabled"] and config.apply_vat_on_service_charge:
            service_vat = calculator.calculate_vat(service["amount"], config.default_rate)
        if to_decimal(request.amount) < to_decimal(config.minimum_taxable_amount):
            vat_amount = Decimal("0")
            service_vat = Decimal("0")
        return {
            "amount": to_decimal(request.amount),
            "vat_rate": rate,
            "vat_amount": vat_amount,
            "service_charge": service["amount"],
            "service_charge_vat": service_vat,
            "total": calculator.round_amount(
                to_decimal(request.amount) + vat_amount + service["amount"] + service_vat,
                config.rounding_method,
                config.rounding_precision
            ),
            "calculation_method": config.calculation_method.value,
            "display_label": config.display_label,
        }

    # ===== SETTINGS CRUD =====

    def list_settings(self) -> List[VATSettings]:
        return self.db.query(VATSettings).order_by(VATSettings.effective_date.desc()).all()

    def get_settings(self, settings_id: UUID) -> VATSettings:
        row = self.db.query(VATSettings).filter(VATSettings.id == settings_id).first()
        if not row:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="VAT settings not found")
        return row

    def active_settings(self) -> dict:
        row = self._active_row()
        if row is None:
            data = default_vat_config().model_dump()
            data.update(name="Default VAT", is_active=True, is_default=True)
            return data
        return row

    @staticmethod
    def _to_columns(payload: dict) -> dict:
        if payload.get("calculation_method") is not None:
            payload["calculation_method"] = CalculationMethod(payload["calculation_method"].value)
        if payload.get("rounding_method") is not None:
            payload["rounding_method"] = RoundingMethod(payload["rounding_method"].value)
        if payload.get("category_rates") is not None:
            payload["category_rates"] = {k: float(v) for k, v in payload["category_rates"].items()}
        if payload.get("tiered_rates") is not None:
            payload["tiered_rates"] = [
                {
                    "min": float(t["min"]),
                    "max": float(t["max"]) if t.get("max") is not None else None,
                    "rate": float(t["rate"])
                }
                for t in payload["tiered_rates"]
            ]
        return payload

    def _deactivate_others(self, keep_id: Optional[UUID] = None) -> None:
        query = self.db.query(VATSettings).filter(VATSettings.is_active == True)
        if keep_id:
            query = query.filter(VATSettings.id != keep_id)
        query.update({VATSettings.is_active: False}, synchronize_session="fetch")

    def create_settings(self, data: VATSettingsCreate, user_id: Optional[UUID] = None) -> VATSettings:
        try:
            payload = self._to_columns(data.model_dump())
            if payload.get("effective_date") is None:
                payload["effective_date"] = utc_now()
            if data.is_active:
                self._deactivate_others()
            row = VATSettings(**payload, created_by=user_id, updated_by=user_id)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            self.clear_cache()
            logger.info(f"VAT settings '{row.name}' created (active={row.is_active})")
            return row
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating VAT settings")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating VAT settings: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def update_settings(self, settings_id: UUID, data: VATSettingsUpdate, user_id: Optional[UUID] = None) -> VATSettings:
        row = self.get_settings(settings_id)
        changes = self._to_columns(data.model_dump(exclude_unset=True))
        for field, value in changes.items():
            setattr(row, field, value)
        row.updated_by = user_id
        self.db.commit()
        self.db.refresh(row)
        self.clear_cache()
        return row

    def activate(self, settings_id: UUID, user_id: Optional[UUID] = None) -> VATSettings:
        row = self.get_settings(settings_id)
        self._deactivate_others(keep_id=row.id)
        row.is_active = True
        row.updated_by = user_id
        self.db.commit()
        self.db.refresh(row)
        self.clear_cache()
        logger.info(f"VAT settings '{row.name}' activated")
        return row

    def delete_settings(self, settings_id: UUID) -> None:
        row = self.get_settings(settings_id)
        if row.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete the active VAT settings; activate another configuration first"
            )
        self.db.delete(row)
        self.db.commit()
        self.clear_cache()
