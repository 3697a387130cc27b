"""Pytest configuration and fixtures for service layer tests."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models.base import Base
from src.services.database import get_session_factory


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)

    db_module.get_session_factory = original_get_session


class CatalogData:
    """Ids of the records a catalog fixture created, by short name."""

    def __init__(self, **ids):
        self.__dict__.update(ids)


@pytest.fixture(scope="function")
def latte_catalog(test_db):
    """Provide the Latte scenario.

    Materials (cost per unit):
    - Coffee Beans: 75.00 / 500 g   -> 0.15 per g
    - Milk:          6.50 / 1000 ml -> 0.0065 per ml
    - Cup:          50.00 / 100     -> 0.50
    - Lid:          30.00 / 100     -> 0.30
    - Vanilla Syrup: 15.00 / 750 ml -> 0.02 per ml

    Products:
    - Latte (external 101, 12.00): 12 g beans, 250 ml milk, cup, lid,
      optional Vanilla Shot add-on. Required cost 4.225.
    - Vanilla Shot (external 102, 2.00): 30 ml syrup (0.60)
    """
    from src.services import material_service, product_service, recipe_service

    beans = material_service.create_material(
        "Coffee Beans", "ingredient", "g", 500, "75.00", stock_quantity=5000, low_stock_threshold=500
    )
    milk = material_service.create_material(
        "Milk", "ingredient", "ml", 1000, "6.50", stock_quantity=20000, low_stock_threshold=2000
    )
    cup = material_service.create_material(
        "Cup", "packaging", "unit", 100, "50.00", stock_quantity=300, low_stock_threshold=50
    )
    lid = material_service.create_material(
        "Lid", "packaging", "unit", 100, "30.00", stock_quantity=300, low_stock_threshold=50
    )
    syrup = material_service.create_material(
        "Vanilla Syrup", "ingredient", "ml", 750, "15.00", stock_quantity=1500
    )

    vanilla = product_service.create_product(
        {"name": "Vanilla Shot", "sku": "ADD-VANILLA", "external_id": 102, "base_price": "2.00"}
    )
    recipe_service.add_recipe_line(
        vanilla["id"], {"item_type": "material", "material_id": syrup["id"], "quantity": 30}
    )

    latte = product_service.create_product(
        {"name": "Latte", "sku": "LATTE", "external_id": 101, "base_price": "12.00"}
    )
    recipe_service.set_product_recipe(
        latte["id"],
        [
            {"item_type": "material", "material_id": beans["id"], "quantity": 12},
            {"item_type": "material", "material_id": milk["id"], "quantity": 250},
            {"item_type": "material", "material_id": cup["id"], "quantity": 1},
            {"item_type": "material", "material_id": lid["id"], "quantity": 1},
            {
                "item_type": "product",
                "linked_product_id": vanilla["id"],
                "quantity": 1,
                "is_optional": True,
            },
        ],
    )

    return CatalogData(
        beans=beans["id"],
        milk=milk["id"],
        cup=cup["id"],
        lid=lid["id"],
        syrup=syrup["id"],
        vanilla=vanilla["id"],
        latte=latte["id"],
    )


@pytest.fixture(scope="function")
def cafe_catalog(test_db, latte_catalog):
    """Provide bundles built on top of the Latte scenario.

    - Hot (0.00): cup                       -> cost 0.50
    - Iced (0.00): cup, lid                 -> cost 0.80
    - Americano (external 201, 8.00): 18 g beans (2.70) and a
      "Temperature" group of Hot (+0.00) / Iced (+1.00)
    - Muffin (external 202, 6.00): bought in, supplier cost 2.50, no recipe
    - Morning Combo (external 203, override 24.00): Americano + Muffin.
      Recursive cost with no nested choice: 2.70 + 2.50 = 5.20
    - Breakfast Set (external 204, 0.00): Latte + Muffin (no choices)
    - Family Pack (external 205, 0.00): 2 x Breakfast Set + Americano
    """
    from src.services import product_service, recipe_service

    c = latte_catalog

    hot = product_service.create_product({"name": "Hot", "sku": "VAR-HOT"})
    iced = product_service.create_product({"name": "Iced", "sku": "VAR-ICED"})
    recipe_service.add_recipe_line(
        hot["id"], {"item_type": "material", "material_id": c.cup, "quantity": 1}
    )
    recipe_service.set_product_recipe(
        iced["id"],
        [
            {"item_type": "material", "material_id": c.cup, "quantity": 1},
            {"item_type": "material", "material_id": c.lid, "quantity": 1},
        ],
    )

    americano = product_service.create_product(
        {"name": "Americano", "sku": "AMERICANO", "external_id": 201, "base_price": "8.00"}
    )
    recipe_service.set_product_recipe(
        americano["id"],
        [
            {"item_type": "material", "material_id": c.beans, "quantity": 18},
            {
                "item_type": "product",
                "linked_product_id": hot["id"],
                "quantity": 1,
                "selection_group": "Temperature",
            },
            {
                "item_type": "product",
                "linked_product_id": iced["id"],
                "quantity": 1,
                "selection_group": "Temperature",
                "price_adjustment": "1.00",
            },
        ],
    )

    muffin = product_service.create_product(
        {
            "name": "Muffin",
            "sku": "MUFFIN",
            "external_id": 202,
            "base_price": "6.00",
            "supplier_cost": "2.50",
        }
    )

    combo = product_service.create_product(
        {
            "name": "Morning Combo",
            "sku": "COMBO-MORNING",
            "external_id": 203,
            "bundle_price_override": "24.00",
        }
    )
    recipe_service.set_product_recipe(
        combo["id"],
        [
            {"item_type": "product", "linked_product_id": americano["id"], "quantity": 1},
            {"item_type": "product", "linked_product_id": muffin["id"], "quantity": 1},
        ],
    )

    breakfast_set = product_service.create_product(
        {"name": "Breakfast Set", "sku": "SET-BREAKFAST", "external_id": 204}
    )
    recipe_service.set_product_recipe(
        breakfast_set["id"],
        [
            {"item_type": "product", "linked_product_id": c.latte, "quantity": 1},
            {"item_type": "product", "linked_product_id": muffin["id"], "quantity": 1},
        ],
    )

    family_pack = product_service.create_product(
        {"name": "Family Pack", "sku": "PACK-FAMILY", "external_id": 205}
    )
    recipe_service.set_product_recipe(
        family_pack["id"],
        [
            {"item_type": "product", "linked_product_id": breakfast_set["id"], "quantity": 2},
            {"item_type": "product", "linked_product_id": americano["id"], "quantity": 1},
        ],
    )

    return CatalogData(
        hot=hot["id"],
        iced=iced["id"],
        americano=americano["id"],
        muffin=muffin["id"],
        combo=combo["id"],
        breakfast_set=breakfast_set["id"],
        family_pack=family_pack["id"],
        **c.__dict__,
    )
