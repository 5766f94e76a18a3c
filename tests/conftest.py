import pytest
from datetime import date
from decimal import Decimal

from marketplace import create_app
from marketplace.database import create_tables, drop_tables, get_session
from marketplace.models import (
    Seller, SellerType, Product, ProductStock, BulkDiscountTier,
    PricingTier, Package, PackageGarment
)
from marketplace.utils.clock import FixedClock

TODAY = date(2024, 6, 15)


@pytest.fixture(scope='function')
def app():
    """Create application instance backed by a fresh in-memory database."""
    app = create_app('config.TestConfig')
    app.config['CLOCK'] = FixedClock(TODAY)
    with app.app_context():
        create_tables()
        yield app
        get_session().remove()
        drop_tables()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def make_supplier(session):
    """Factory: goods seller, optionally with bulk tiers [(min_qty, pct), ...]."""
    def _make(name='Fabric House', tiers=None, active=True):
        seller = Seller(
            name=name,
            seller_type=SellerType.SUPPLIER,
            active=active,
            bulk_discount_enabled=tiers is not None
        )
        for min_qty, pct in tiers or []:
            seller.bulk_discount_tiers.append(BulkDiscountTier(
                min_quantity=min_qty,
                discount_percentage=None if pct is None else Decimal(str(pct))
            ))
        session.add(seller)
        session.commit()
        return seller
    return _make


@pytest.fixture
def make_product(session):
    """Factory: product with a stock row."""
    def _make(seller, name='Lawn Cotton', price='100.00', stock=100, minimum_order_quantity=1, active=True):
        product = Product(
            seller_id=seller.id,
            name=name,
            unit='meter',
            unit_price=Decimal(price),
            minimum_order_quantity=minimum_order_quantity,
            active=active
        )
        product.stock = ProductStock(on_hand_qty=stock)
        session.add(product)
        session.commit()
        return product
    return _make


@pytest.fixture
def make_tailor(session):
    """Factory: tailor with one pricing tier; keyword arguments go to the tier."""
    def _make(name='Stitch Masters', **tier_fields):
        seller = Seller(name=name, seller_type=SellerType.TAILOR, active=True)
        fields = {
            'tier_type': 'basic',
            'name': 'Standard Stitching',
            'base_price': Decimal('2000.00'),
            'minimum_order': 1,
        }
        fields.update(tier_fields)
        seller.pricing_tiers.append(PricingTier(**fields))
        session.add(seller)
        session.commit()
        return seller
    return _make


@pytest.fixture
def make_package(session):
    """Factory: package of a tailor with garments [(garment_type, qty), ...]."""
    def _make(tailor, garments=(('shalwar_kameez', 3),), package_price='15000.00',
              original_price='18000.00', **fields):
        package = Package(
            seller_id=tailor.id,
            name=fields.pop('name', 'Eid Family Pack'),
            tier_type=fields.pop('tier_type', 'basic'),
            original_price=Decimal(original_price),
            package_price=Decimal(package_price),
            **fields
        )
        for garment, qty in garments:
            package.garments.append(PackageGarment(garment_type=garment, quantity=qty))
        session.add(package)
        session.commit()
        return package
    return _make


@pytest.fixture
def supplier(make_supplier):
    """Goods seller with tiers 10 units -> 5% and 50 units -> 15%."""
    return make_supplier(tiers=[(10, 5), (50, 15)])


@pytest.fixture
def product(make_product, supplier):
    return make_product(supplier, price='100.00', stock=100)


@pytest.fixture
def tailor(make_tailor):
    """Tailor whose basic tier has multiple-garments (3 -> 10%) and an active seasonal offer (5%)."""
    return make_tailor(
        garment_pricing={'sherwani': '5000.00'},
        additional_charges={'embroidery': '500.00', 'rush_order': '1000.00'},
        multiple_garments_enabled=True,
        multiple_garments_threshold=3,
        multiple_garments_percentage=Decimal('10'),
        seasonal_enabled=True,
        seasonal_percentage=Decimal('5'),
        seasonal_start_date=date(2024, 6, 1),
        seasonal_end_date=date(2024, 6, 30),
        corporate_enabled=True,
        corporate_percentage=Decimal('20'),
        corporate_minimum_orders=5,
    )


@pytest.fixture
def login(client):
    """Authenticate the test client as a customer."""
    def _login(customer_id=1):
        with client.session_transaction() as sess:
            sess['customer_id'] = customer_id
        return customer_id
    return _login


@pytest.fixture
def login_seller(client):
    """Authenticate the test client as a seller."""
    def _login(seller_id):
        with client.session_transaction() as sess:
            sess['seller_id'] = seller_id
        return seller_id
    return _login
