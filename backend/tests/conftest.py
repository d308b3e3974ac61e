"""
Pytest fixtures for Tillpoint backend tests.

Provides an in-memory database, a per-test wipe, and small entity factories
(branch, cashier, category, stocked products, customer, promotions).
"""

import pytest

from tillpoint import create_app
from tillpoint.extensions import db
from tillpoint.models import Branch, Category, Customer, Product, Promotion, User
from tillpoint.models.promotions import (
    PROMO_BUY_X_GET_Y,
    PROMO_FIXED_AMOUNT,
    PROMO_PERCENTAGE,
    SCOPE_CATEGORY,
    SCOPE_PRODUCT,
)
from tillpoint.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PROMOTION_DISCOUNT_TOLERANCE_CENTS': 1,
        'ENFORCE_PAYMENT_TOTAL': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(name="Main Street", code="MAIN")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Harbour", code="HARB")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def cashier(db_session):
    user = User(username="cashier", display_name="Cashier One")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ada Lovelace", email="ada@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_product(db_session, branch):
    """Factory: product stocked through an initial_stock movement."""
    counter = {"n": 0}

    def _make(price_cents=1000, stock=10, category=None, is_active=True, branch_id=None, name=None):
        counter["n"] += 1
        product = Product(
            branch_id=branch_id or branch.id,
            category_id=category.id if category is not None else None,
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            is_active=True,
            stock=0,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            inventory_service.record_stock_movement(
                product.id, product.branch_id, stock, "initial_stock"
            )
        if not is_active:
            product.is_active = False
            db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product, category):
    return make_product(price_cents=1000, stock=10, category=category)


@pytest.fixture(scope='function')
def make_promotion(db_session):
    """Factory: promotion row with products/categories/branches assigned."""

    def _make(promo_type=PROMO_PERCENTAGE, scope=SCOPE_PRODUCT, products=(), categories=(),
              branches=(), priority=0, is_active=True, name=None, **values):
        promo = Promotion(
            name=name or f"{promo_type} promo",
            promo_type=promo_type,
            scope=scope,
            priority=priority,
            is_active=is_active,
            discount_bps=values.get("discount_bps"),
            discount_amount_cents=values.get("discount_amount_cents"),
            buy_qty=values.get("buy_qty"),
            get_qty=values.get("get_qty"),
        )
        promo.products = list(products)
        promo.categories = list(categories)
        promo.branches = list(branches)
        db_session.add(promo)
        db_session.commit()
        return promo

    return _make


@pytest.fixture(scope='function')
def percent_promo(make_promotion, product):
    """33.33% off the default product."""
    return make_promotion(PROMO_PERCENTAGE, products=[product], discount_bps=3333, name="Third off")


@pytest.fixture(scope='function')
def bxgy_promo(make_promotion, product):
    """Buy 2 get 1 free on the default product."""
    return make_promotion(PROMO_BUY_X_GET_Y, products=[product], buy_qty=2, get_qty=1, name="3 for 2")


@pytest.fixture(scope='function')
def fixed_category_promo(make_promotion, category):
    """50 cents off every unit in the category."""
    return make_promotion(
        PROMO_FIXED_AMOUNT, scope=SCOPE_CATEGORY, categories=[category], discount_amount_cents=50,
        name="50c off beverages",
    )


def cash(amount_cents: int) -> list[dict]:
    """Helper for a single cash payment."""
    return [{"method": "CASH", "amount_cents": amount_cents}]
