"""
Pytest fixtures for fiscal POS backend tests.

Provides the in-memory app, a per-test table wipe, catalog / staff / customer
factories, and a scripted fiscal gateway.
"""

import pytest
from datetime import date

from fiscalpos import create_app
from fiscalpos.extensions import db
from fiscalpos.models import (
    Branch,
    BranchStock,
    CashRegister,
    Customer,
    Product,
    RegisterSession,
    Role,
    User,
)
from fiscalpos.services.auth_service import create_default_roles, hash_pin
from fiscalpos.services.fiscal_gateway import GatewayResult, GatewayStatus
from fiscalpos.services.notifier import OWNERS_TOPIC
from fiscalpos.services.payment_service import create_default_payment_methods
from fiscalpos.time_utils import business_date


TEST_TIMEZONE = "America/Argentina/Buenos_Aires"

OWNER_PIN = "1357"
MANAGER_PIN = "2468"


class FakeGateway:
    """
    Stands in for FiscalGatewayClient.

    Queue GatewayResult objects (or exceptions to raise) with queue(); with
    an empty queue every submission succeeds with a fresh CAE.
    """

    def __init__(self):
        self.results = []
        self.invoice_payloads = []
        self.credit_note_payloads = []
        self.on_submit = None
        self.connected = True
        self._next_cae = 74000000000000

    def queue(self, *results):
        self.results.extend(results)

    def _next(self):
        if self.on_submit is not None:
            hook, self.on_submit = self.on_submit, None
            hook()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        self._next_cae += 1
        return GatewayResult(
            success=True,
            cae=str(self._next_cae),
            cae_expiration=date(2030, 1, 10),
            gateway_id=str(self._next_cae)[-6:],
            raw_response={"success": True, "cae": str(self._next_cae)},
        )

    def submit_invoice(self, payload):
        self.invoice_payloads.append(payload)
        return self._next()

    def submit_credit_note(self, payload):
        self.credit_note_payloads.append(payload)
        return self._next()

    def check_status(self):
        if self.connected:
            return GatewayStatus(connected=True, detail={"status": "ok"})
        return GatewayStatus(connected=False, error="Gateway unreachable: connection refused")


def retryable_failure(message="Gateway timeout: read timed out"):
    return GatewayResult(success=False, error=message, retryable=True)


def rejection(message="CUIT del receptor inválido"):
    return GatewayResult(success=False, error=message, retryable=False, raw_response={"success": False, "error": message})


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BACKGROUND_TASKS_EAGER': True,
        'PIN_HASH_ROUNDS': 4,
        'BUSINESS_TIMEZONE': TEST_TIMEZONE,
        'INVOICE_RETRY_ITEM_DELAY_SECONDS': 0,
        'FISCAL_GATEWAY_URL': 'http://gateway.test/v1',
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


@pytest.fixture(scope='function', autouse=True)
def fake_gateway(app):
    """Replace the HTTP gateway client for the duration of a test."""
    original = app.extensions["fiscalpos.fiscal_gateway"]
    gateway = FakeGateway()
    app.extensions["fiscalpos.fiscal_gateway"] = gateway
    yield gateway
    app.extensions["fiscalpos.fiscal_gateway"] = original


@pytest.fixture(scope='function')
def events(app):
    """Every notification published to the owners room during the test."""
    received = []

    def _collect(topic, event):
        received.append(event)

    notifier = app.extensions["fiscalpos.notifier"]
    notifier.subscribe(OWNERS_TOPIC, _collect)
    yield received
    notifier.unsubscribe(OWNERS_TOPIC, _collect)


# =============================================================================
# BRANCH / REGISTER / SESSION
# =============================================================================

@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(
        code="CC",
        name="Casa Central",
        tax_condition="RESPONSABLE_INSCRIPTO",
        tax_id="30712345674",
        point_of_sale=3,
        address="Av. Corrientes 1234, CABA",
    )
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def register(db_session, branch):
    register = CashRegister(branch_id=branch.id, register_number=1, name="Caja 1")
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def today():
    return business_date(TEST_TIMEZONE)


@pytest.fixture(scope='function')
def open_session(db_session, branch, register, today):
    session = RegisterSession(
        branch_id=branch.id,
        register_id=register.id,
        status="OPEN",
        business_date=today,
        opening_cash_cents=50000,
    )
    db_session.add(session)
    db_session.commit()
    return session


# =============================================================================
# STAFF
# =============================================================================

@pytest.fixture(scope='function')
def roles(db_session):
    """Default roles keyed by name."""
    created = create_default_roles()
    db_session.commit()
    return {role.name: role for role in created}


@pytest.fixture(scope='function')
def payment_methods(db_session):
    methods = create_default_payment_methods()
    db_session.commit()
    return {method.code: method for method in methods}


def _make_user(db_session, role: Role, username: str, branch_id: int, pin: str = None) -> User:
    user = User(
        username=username,
        first_name=username.capitalize(),
        role_id=role.id,
        branch_id=branch_id,
        pin_hash=hash_pin(pin) if pin else None,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, roles, branch):
    return _make_user(db_session, roles["owner"], "owner", branch.id, pin=OWNER_PIN)


@pytest.fixture(scope='function')
def manager(db_session, roles, branch):
    return _make_user(db_session, roles["manager"], "manager", branch.id, pin=MANAGER_PIN)


@pytest.fixture(scope='function')
def cashier(db_session, roles, branch):
    return _make_user(db_session, roles["cashier"], "cashier", branch.id)


# =============================================================================
# CATALOG
# =============================================================================

def _make_product(db_session, branch, sku, name, price_cents, *, tax_included, quantity=10, minimum_stock=0):
    product = Product(
        sku=sku,
        name=name,
        price_cents=price_cents,
        tax_rate_bps=2100,
        is_tax_included=tax_included,
        minimum_stock=minimum_stock,
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(BranchStock(branch_id=branch.id, product_id=product.id, quantity=quantity))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_included(db_session, branch):
    """$121.00 with 21% VAT included."""
    return _make_product(db_session, branch, "YERBA-1KG", "Yerba Mate 1kg", 12100, tax_included=True)


@pytest.fixture(scope='function')
def product_excluded(db_session, branch):
    """$100.00 plus 21% VAT."""
    return _make_product(db_session, branch, "TERMO-1L", "Termo 1L", 10000, tax_included=False)


@pytest.fixture(scope='function')
def product_low(db_session, branch):
    """Three on the shelf, minimum two."""
    return _make_product(db_session, branch, "MATE-CAL", "Mate Calabaza", 5000, tax_included=True,
                         quantity=3, minimum_stock=2)


# =============================================================================
# CUSTOMERS
# =============================================================================

@pytest.fixture(scope='function')
def customer(db_session):
    """Consumer with points and store credit."""
    customer = Customer(
        first_name="Lucía",
        last_name="Fernández",
        document_type="DNI",
        document_number="30111222",
        tax_condition="CONSUMIDOR_FINAL",
        loyalty_points=500,
        credit_balance_cents=10000,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def ri_customer(db_session):
    """Registered taxpayer with complete fiscal data (invoice A)."""
    customer = Customer(
        business_name="Distribuidora del Sur SRL",
        document_type="CUIT",
        document_number="30709876543",
        tax_condition="RESPONSABLE_INSCRIPTO",
        tax_id="30709876543",
        address="Calle Falsa 123, Lanús",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def wholesale_customer(db_session):
    customer = Customer(
        business_name="Almacén Don Pepe",
        document_type="CUIT",
        document_number="20304050607",
        tax_condition="MONOTRIBUTO",
        is_wholesale=True,
        wholesale_discount_bps=2000,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def cash(amount_cents: int) -> dict:
    return {"payment_method_code": "CASH", "amount_cents": amount_cents}


def sale_request(session, items, payments, **extra) -> dict:
    """items: [(product, quantity), ...]"""
    data = {
        "session_id": session.id,
        "items": [{"product_id": product.id, "quantity": quantity} for product, quantity in items],
        "payments": payments,
    }
    data.update(extra)
    return data


@pytest.fixture(scope='function')
def pos(open_session, payment_methods, owner, manager, cashier):
    """Everything a sale needs: open session, tenders and staff."""
    return open_session
