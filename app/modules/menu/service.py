from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_
from typing import Optional, List
from uuid import UUID
import logging

from app.modules.menu.models import (
    MenuItem, MenuItemPortion, MenuItemIngredient, MenuCategory, CATEGORY_LABELS
)
from app.modules.menu.schemas import (
    MenuItemCreate, MenuItemUpdate, PortionCreate, RecipeUpdate
)
from app.modules.inventory.models import Ingredient

logger = logging.getLogger(__name__)


class MenuService:
    """Menu items, portions and recipes"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def list_categories() -> List[dict]:
        return [{"value": c.value, "label": CATEGORY_LABELS[c]} for c in MenuCategory]

    def get_item(self, item_id: UUID) -> MenuItem:
        item = (
            self.db.query(MenuItem)
            .options(selectinload(MenuItem.portions))
            .filter(MenuItem.id == item_id)
            .first()
        )
        if not item:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu item not found")
        return item

    def list_items(
        self,
        category: Optional[str] = None,
        available: Optional[bool] = None,
        search: Optional[str] = None
    ) -> List[MenuItem]:
        query = self.db.query(MenuItem).options(selectinload(MenuItem.portions))
        if category:
            query = query.filter(MenuItem.category == MenuCategory(category))
        if available is not None:
            query = query.filter(MenuItem.is_available == available)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(MenuItem.name.ilike(pattern), MenuItem.description.ilike(pattern)))
        return query.order_by(MenuItem.category, MenuItem.name).all()

    def _ensure_unique_name(self, name: str, exclude_id: Optional[UUID] = None):
        query = self.db.query(MenuItem).filter(MenuItem.name == name)
        if exclude_id:
            query = query.filter(MenuItem.id != exclude_id)
        if query.first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"A menu item named '{name}' already exists"
            )

    def create_item(self, data: MenuItemCreate) -> MenuItem:
        try:
            self._ensure_unique_name(data.name)
            payload = data.model_dump()
            payload["category"] = MenuCategory(data.category.value)
            item = MenuItem(**payload)
            self.db.add(item)
            self.db.commit()
            self.db.refresh(item)
            logger.info(f"Menu item created: {item.name}")
            return item
        except HTTPException:
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Integrity error creating menu item")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating menu item: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def update_item(self, item_id: UUID, data: MenuItemUpdate) -> MenuItem:
        item = self.get_item(item_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] != item.name:
            self._ensure_unique_name(changes["name"], exclude_id=item.id)
        if changes.get("category") is not None:
            changes["category"] = MenuCategory(changes["category"].value)
        for field, value in changes.items():
            setattr(item, field, value)
        self.db.commit()
        self.db.refresh(item)
        return item

    def delete_item(self, item_id: UUID) -> None:
        item = self.get_item(item_id)
        try:
            self.db.delete(item)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Menu item is referenced by other records; mark it unavailable instead"
            )

    def set_availability(self, item_id: UUID, is_available: Optional[bool] = None) -> MenuItem:
        item = self.get_item(item_id)
        item.is_available = (not item.is_available) if is_available is None else is_available
        self.db.commit()
        self.db.refresh(item)
        return item

    # ===== PORTIONS =====

    def add_portion(self, item_id: UUID, data: PortionCreate) -> MenuItemPortion:
        item = self.get_item(item_id)
        if any(p.name.lower() == data.name.lower() for p in item.portions):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Portion '{data.name}' already exists for {item.name}"
            )

        if data.is_default:
            for sibling in item.portions:
                sibling.is_default = False

        portion = MenuItemPortion(menu_item_id=item.id, **data.model_dump())
        self.db.add(portion)
        self.db.commit()
        self.db.refresh(portion)
        return portion

    def list_portions(self, item_id: UUID) -> List[MenuItemPortion]:
        return self.get_item(item_id).portions

    def get_portion(self, item_id: UUID, portion_id: UUID) -> MenuItemPortion:
        portion = self.db.query(MenuItemPortion).filter(
            MenuItemPortion.id == portion_id,
            MenuItemPortion.menu_item_id == item_id
        ).first()
        if not portion:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portion not found for this menu item")
        return portion

    # ===== RECIPES =====

    def get_recipe(self, item_id: UUID, portion_id: Optional[UUID] = None) -> List[MenuItemIngredient]:
        self.get_item(item_id)
        query = (
            self.db.query(MenuItemIngredient)
            .options(selectinload(MenuItemIngredient.ingredient))
            .filter(MenuItemIngredient.menu_item_id == item_id)
        )
        if portion_id:
            query = query.filter(MenuItemIngredient.portion_id == portion_id)
        else:
            query = query.filter(MenuItemIngredient.portion_id.is_(None))
        return query.all()

    def replace_recipe(self, item_id: UUID, data: RecipeUpdate) -> List[MenuItemIngredient]:
        """
        Replace the recipe of an item, or of one of its portions.

        Every ingredient must exist; lines are written in one commit.
        """
        item = self.get_item(item_id)
        if data.portion_id:
            self.get_portion(item.id, data.portion_id)

        ids = [line.ingredient_id for line in data.ingredients]
        ingredients = {
            i.id: i for i in self.db.query(Ingredient).filter(Ingredient.id.in_(ids)).all()
        } if ids else {}
        missing = [str(i) for i in ids if i not in ingredients]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Ingredients not found: {', '.join(missing)}"
            )

        try:
            existing = self.db.query(MenuItemIngredient).filter(MenuItemIngredient.menu_item_id == item.id)
            if data.portion_id:
                existing = existing.filter(MenuItemIngredient.portion_id == data.portion_id)
            else:
                existing = existing.filter(MenuItemIngredient.portion_id.is_(None))
            existing.delete(synchronize_session=False)

            for line in data.ingredients:
                ingredient = ingredients[line.ingredient_id]
                self.db.add(MenuItemIngredient(
                    menu_item_id=item.id,
                    portion_id=data.portion_id,
                    ingredient_id=ingredient.id,
                    quantity=line.quantity,
                    unit=line.unit or ingredient.unit
                ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error replacing recipe for {item.name}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

        logger.info(f"Recipe for {item.name} set with {len(data.ingredients)} line(s)")
        return self.get_recipe(item.id, data.portion_id)
