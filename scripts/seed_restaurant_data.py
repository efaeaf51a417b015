"""
Seed script: Populate a demo Sri Lankan restaurant.

What it creates (skipping anything that already exists):
- Admin user with the given credentials.
- Stock locations: Main Store, Main Kitchen, Bar.
- Kitchen stations (Hot Line, Pastry, Tea Bar) and the categories they take.
- Ingredients with opening stock.
- Menu items with portions and recipes.
- Retail products (drinks, snacks) with an opening batch.
- Active VAT settings at 15% exclusive.

Run inside the API container to use the 'postgres' host and project PYTHONPATH:
    docker compose exec api python scripts/seed_restaurant_data.py \
        --username admin --password LankaPos!2026

Note: This is intended for development environments only.
"""

# Add project root (/code) to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
from decimal import Decimal

from app.database.database import SessionLocal, Base, sync_engine
from app.main import app  # noqa: F401  registers every model
from app.modules.auth.models import User, UserRole
from app.modules.auth.utils import hash_password
from app.modules.inventory.models import Ingredient, StockLocation, LocationType
from app.modules.inventory.schemas import IngredientCreate
from app.modules.inventory.service import IngredientService
from app.modules.kitchen.models import KitchenStation
from app.modules.menu.models import MenuItem, MenuItemPortion, MenuItemIngredient, MenuCategory
from app.modules.products.models import Product, InventoryBatch
from app.modules.vat.models import VATSettings, CalculationMethod, RoundingMethod


LOCATIONS = [
    ("Main Store", LocationType.STORE, "Dry store and cold room"),
    ("Main Kitchen", LocationType.KITCHEN, "Hot kitchen line"),
    ("Bar", LocationType.BAR, "Drinks counter"),
]

# name, code, categories, priority, average prep minutes, location
STATIONS = [
    ("Hot Line", "HOT", ["mains", "starters", "sides", "specials"], 2, 15, "Main Kitchen"),
    ("Pastry", "PST", ["desserts"], 1, 8, "Main Kitchen"),
    ("Tea Bar", "BAR", ["beverages"], 1, 5, "Bar"),
]

# name, unit, category, opening stock, reorder level, unit cost
INGREDIENTS = [
    ("Basmati Rice", "kg", "grains", "50", "10", "450"),
    ("Chicken", "kg", "meat", "30", "8", "1400"),
    ("Godamba Roti", "pcs", "bakery", "120", "40", "35"),
    ("Eggs", "pcs", "dairy", "180", "60", "45"),
    ("Coconut Milk", "l", "dairy", "20", "5", "600"),
    ("Dhal", "kg", "grains", "15", "4", "520"),
    ("Rice Flour", "kg", "grains", "25", "5", "300"),
    ("Curry Powder", "kg", "spices", "4", "1", "2200"),
    ("Onions", "kg", "vegetables", "20", "5", "380"),
    ("Tea Leaves", "kg", "beverages", "3", "1", "2600"),
]

# name, category, price, cost, portions [(name, price, cost, default)], recipe [(ingredient, qty)]
MENU = [
    ("Chicken Kottu", MenuCategory.MAINS, "1200", "480",
     [("Regular", "1200", "480", True), ("Large", "1600", "650", False)],
     [("Godamba Roti", "2"), ("Chicken", "0.15"), ("Eggs", "1"), ("Onions", "0.05"), ("Curry Powder", "0.01")]),
    ("Chicken Fried Rice", MenuCategory.MAINS, "1100", "420",
     [("Regular", "1100", "420", True), ("Large", "1500", "580", False)],
     [("Basmati Rice", "0.25"), ("Chicken", "0.12"), ("Eggs", "1")]),
    ("Rice and Curry", MenuCategory.MAINS, "750", "300",
     [("Vegetable", "750", "300", True), ("Chicken", "950", "420", False)],
     [("Basmati Rice", "0.2"), ("Dhal", "0.05"), ("Coconut Milk", "0.05"), ("Curry Powder", "0.01")]),
    ("Egg Hoppers", MenuCategory.STARTERS, "150", "50", [],
     [("Rice Flour", "0.05"), ("Coconut Milk", "0.03"), ("Eggs", "1")]),
    ("Watalappan", MenuCategory.DESSERTS, "400", "150", [],
     [("Eggs", "2"), ("Coconut Milk", "0.1")]),
    ("Plain Tea", MenuCategory.BEVERAGES, "100", "25", [],
     [("Tea Leaves", "0.005")]),
]

# name, sku, category, price, cost, opening quantity, reorder level
PRODUCTS = [
    ("Elephant House Ginger Beer 330ml", "EH-GB-330", "beverages", "250", "160", "48", "12"),
    ("Elephant House Cream Soda 330ml", "EH-CS-330", "beverages", "250", "160", "48", "12"),
    ("Bottled Water 500ml", "WTR-500", "beverages", "120", "70", "96", "24"),
    ("Manioc Chips 100g", "SNK-MAN-100", "snacks", "300", "190", "30", "10"),
]


def create_admin(db, username: str, email: str, password: str) -> User:
    existing = db.query(User).filter(User.username == username).first()
    if existing:
        return existing
    user = User(
        username=username,
        email=email,
        password=hash_password(password),
        full_name="Restaurant Administrator",
        role=UserRole.ADMIN,
        is_active=True
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_locations(db):
    locations = []
    for name, location_type, description in LOCATIONS:
        location = db.query(StockLocation).filter(StockLocation.location_name == name).first()
        if not location:
            location = StockLocation(location_name=name, location_type=location_type, description=description)
            db.add(location)
        locations.append(location)
    db.commit()
    return locations


def create_stations(db, locations):
    by_name = {location.location_name: location for location in locations}
    created = 0
    for name, code, categories, priority, prep_time, location_name in STATIONS:
        if db.query(KitchenStation).filter(KitchenStation.code == code).first():
            continue
        db.add(KitchenStation(
            name=name,
            code=code,
            categories=categories,
            priority=priority,
            average_prep_time=prep_time,
            location_id=by_name[location_name].id
        ))
        created += 1
    db.commit()
    return created


def create_ingredients(db, user_id):
    service = IngredientService(db)
    ingredients = {}
    for name, unit, category, stock, reorder, cost in INGREDIENTS:
        ingredient = db.query(Ingredient).filter(Ingredient.name == name).first()
        if not ingredient:
            ingredient = service.create_ingredient(IngredientCreate(
                name=name,
                unit=unit,
                category=category,
                current_stock=Decimal(stock),
                reorder_level=Decimal(reorder),
                unit_cost=Decimal(cost),
                supplier="Colombo Wholesale Market"
            ), user_id)
        ingredients[name] = ingredient
    return ingredients


def create_menu(db, ingredients):
    created = 0
    for name, category, price, cost, portions, recipe in MENU:
        if db.query(MenuItem).filter(MenuItem.name == name).first():
            continue
        item = MenuItem(name=name, category=category, price=Decimal(price), cost_price=Decimal(cost))
        for portion_name, portion_price, portion_cost, is_default in portions:
            item.portions.append(MenuItemPortion(
                name=portion_name,
                price=Decimal(portion_price),
                cost_price=Decimal(portion_cost),
                is_default=is_default
            ))
        for ingredient_name, quantity in recipe:
            ingredient = ingredients[ingredient_name]
            item.recipe.append(MenuItemIngredient(
                ingredient_id=ingredient.id,
                quantity=Decimal(quantity),
                unit=ingredient.unit
            ))
        db.add(item)
        created += 1
    db.commit()
    return created


def create_products(db):
    created = 0
    for name, sku, category, price, cost, quantity, reorder in PRODUCTS:
        if db.query(Product).filter(Product.sku == sku).first():
            continue
        product = Product(
            name=name,
            sku=sku,
            category=category,
            unit_price=Decimal(price),
            cost_price=Decimal(cost),
            reorder_level=Decimal(reorder),
            track_inventory=True
        )
        product.batches.append(InventoryBatch(
            batch_number=f"{sku}-OPENING",
            quantity=Decimal(quantity),
            purchased_quantity=Decimal(quantity),
            cost_price=Decimal(cost),
            selling_price=Decimal(price),
            supplier="Elephant House Distributors" if sku.startswith("EH") else "Local supplier"
        ))
        db.add(product)
        created += 1
    db.commit()
    return created


def create_vat_settings(db, user_id):
    active = db.query(VATSettings).filter(VATSettings.is_active == True).first()
    if active:
        return active
    vat = VATSettings(
        name="Sri Lanka VAT 15%",
        description="Standard rate, prices exclusive of VAT",
        is_enabled=True,
        default_rate=Decimal("0.15"),
        calculation_method=CalculationMethod.EXCLUSIVE,
        rounding_method=RoundingMethod.NEAREST,
        exempt_categories=[],
        registration_number="123456789-7000",
        is_active=True,
        created_by=user_id
    )
    db.add(vat)
    db.commit()
    return vat


def main():
    parser = argparse.ArgumentParser(description="Seed restaurant demo data")
    parser.add_argument("--username", default="admin")
    parser.add_argument("--email", default="admin@lankapos.lk")
    parser.add_argument("--password", default="LankaPos!2026")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    if args.create_tables:
        Base.metadata.create_all(bind=sync_engine)

    db = SessionLocal()
    try:
        user = create_admin(db, args.username, args.email, args.password)
        locations = create_locations(db)
        print(f"Locations: {', '.join(l.location_name for l in locations)}")
        print(f"Kitchen stations created: {create_stations(db, locations)}")

        print("Creating ingredients...")
        ingredients = create_ingredients(db, user.id)
        print(f"Ingredients: {len(ingredients)}")

        print("Creating menu items...")
        print(f"Menu items created: {create_menu(db, ingredients)}")

        print("Creating products...")
        print(f"Products created: {create_products(db)}")

        vat = create_vat_settings(db, user.id)
        print(f"Active VAT settings: {vat.name}")

        print("\nSeed completed.")
        print("Login credentials:")
        print(f"  Username: {args.username}")
        print(f"  Password: {args.password}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
