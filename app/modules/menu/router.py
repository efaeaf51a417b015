from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, ALL_ROLES, MANAGEMENT_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.menu.service import MenuService
from app.modules.menu.schemas import (
    MenuCategoryEnum, MenuCategoryOut, MenuItemCreate, MenuItemUpdate, MenuItemOut, MenuItemList,
    AvailabilityUpdate, PortionCreate, PortionOut, RecipeUpdate, RecipeLineOut
)

menu_router = APIRouter(prefix="/menu", tags=["Menu"])


def _recipe_out(lines) -> List[RecipeLineOut]:
    return [
        RecipeLineOut(
            id=line.id,
            menu_item_id=line.menu_item_id,
            portion_id=line.portion_id,
            ingredient_id=line.ingredient_id,
            ingredient_name=line.ingredient.name if line.ingredient else None,
            quantity=line.quantity,
            unit=line.unit
        )
        for line in lines
    ]


@menu_router.get("/categories", response_model=List[MenuCategoryOut])
async def list_categories(
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES))
):
    """Menu category catalogue with display labels."""
    return MenuService.list_categories()


@menu_router.get("", response_model=MenuItemList)
async def list_menu_items(
    category: Optional[MenuCategoryEnum] = Query(None),
    available: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Name or description"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    items = MenuService(db).list_items(
        category=category.value if category else None,
        available=available,
        search=search
    )
    return MenuItemList(items=[MenuItemOut.model_validate(i) for i in items], total=len(items))


@menu_router.post("", response_model=MenuItemOut, status_code=status.HTTP_201_CREATED)
async def create_menu_item(
    item_data: MenuItemCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Create a menu item.

    - **category**: starters, mains, desserts, beverages, sides or specials
    - **spicy_level**: 0 (mild) to 5
    - **name**: must be unique
    """
    return MenuService(db).create_item(item_data)


@menu_router.get("/{item_id}", response_model=MenuItemOut)
async def get_menu_item(
    item_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return MenuService(db).get_item(item_id)


@menu_router.put("/{item_id}", response_model=MenuItemOut)
async def update_menu_item(
    item_id: UUID,
    item_data: MenuItemUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return MenuService(db).update_item(item_id, item_data)


@menu_router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_menu_item(
    item_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    MenuService(db).delete_item(item_id)


@menu_router.patch("/{item_id}/availability", response_model=MenuItemOut)
async def set_availability(
    item_id: UUID,
    body: Optional[AvailabilityUpdate] = None,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    """Toggle availability, or set it explicitly with **is_available**."""
    return MenuService(db).set_availability(item_id, body.is_available if body else None)


@menu_router.post("/{item_id}/portions", response_model=PortionOut, status_code=status.HTTP_201_CREATED)
async def add_portion(
    item_id: UUID,
    portion_data: PortionCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Add a portion size. A default portion clears the flag on the others."""
    return MenuService(db).add_portion(item_id, portion_data)


@menu_router.get("/{item_id}/portions", response_model=List[PortionOut])
async def list_portions(
    item_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return [PortionOut.model_validate(p) for p in MenuService(db).list_portions(item_id)]


@menu_router.put("/{item_id}/recipe", response_model=List[RecipeLineOut])
async def replace_recipe(
    item_id: UUID,
    recipe: RecipeUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Replace the recipe lines of an item.

    With **portion_id** only that portion's recipe is replaced.
    """
    return _recipe_out(MenuService(db).replace_recipe(item_id, recipe))


@menu_router.get("/{item_id}/recipe", response_model=List[RecipeLineOut])
async def get_recipe(
    item_id: UUID,
    portion_id: Optional[UUID] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(ALL_ROLES)),
    db: Session = Depends(get_db)
):
    return _recipe_out(MenuService(db).get_recipe(item_id, portion_id))
