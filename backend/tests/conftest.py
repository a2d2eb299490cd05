"""
Pytest fixtures for Giftsity backend tests.

All three gateways (main, seller, corporate) are built against ONE SQLite
file, the same way production runs them against one database. A token
issued by one gateway can therefore be presented to another, which is what
the scoping tests need.

Collaborators (OTP delivery, payment provider) are replaced with capturing
fakes for every test.
"""

import pytest

from giftsity import create_app
from giftsity.extensions import db
from giftsity.models import Product
from giftsity.services import identity_service, otp_delivery, payment_service, session_service
from giftsity.services.auth_service import hash_password
from giftsity.time_utils import utcnow


TEST_PASSWORD = "Password123!"


class CapturingDelivery:
    """Records every code instead of emailing it."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, email, code, purpose):
        if self.fail:
            raise ConnectionError("mail server down")
        self.sent.append({"email": email, "code": code, "purpose": purpose})

    def last_code(self, email):
        for message in reversed(self.sent):
            if message["email"] == email:
                return message["code"]
        return None


class FakePaymentGateway:
    """Deterministic payment provider; refunds can be made to fail."""

    def __init__(self):
        self.payments = []
        self.refunds = []
        self.fail_payments = False
        self.fail_refunds = False

    def create_payment(self, order):
        if self.fail_payments:
            raise ConnectionError("payment provider down")
        self.payments.append(order.order_number)
        return f"pay_{order.order_number}"

    def refund(self, order, amount_cents):
        if self.fail_refunds:
            raise ConnectionError("payment provider down")
        self.refunds.append((order.order_number, amount_cents))
        return f"rfd_{order.order_number}_{len(self.refunds)}"


@pytest.fixture(scope='session')
def apps(tmp_path_factory):
    """Build the three gateways against one shared database file."""
    db_path = tmp_path_factory.mktemp("db") / "giftsity-test.sqlite3"
    test_config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'OTP_DELIVERY_ATTEMPTS': 1,
        'PAYMENT_GATEWAY_ATTEMPTS': 1,
        'AUDIT_RETENTION_DAYS': None,
    }
    built = {
        name: create_app(name, test_config=test_config)
        for name in ('main', 'seller', 'corporate')
    }

    with built['main'].app_context():
        db.create_all()

    yield built

    with built['main'].app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def outbox(apps):
    delivery = CapturingDelivery()
    for gateway_app in apps.values():
        gateway_app.extensions[otp_delivery.EXTENSION_KEY] = delivery
    return delivery


@pytest.fixture(scope='function')
def payments(apps):
    gateway = FakePaymentGateway()
    for gateway_app in apps.values():
        gateway_app.extensions[payment_service.EXTENSION_KEY] = gateway
    return gateway


@pytest.fixture(scope='function')
def app(apps, outbox, payments):
    """Main gateway with a pushed app context and empty tables."""
    main = apps['main']
    with main.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield main

        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def seller_client(apps, app):
    return apps['seller'].test_client()


@pytest.fixture(scope='function')
def corporate_client(apps, app):
    return apps['corporate'].test_client()


# =============================================================================
# IDENTITIES
# =============================================================================

def make_identity(role, email, *, verified=True, password=None, **profile):
    """Create an identity directly in the credential store."""
    password_hash = hash_password(password) if password else None
    identity = identity_service.register_identity(role, email, profile, password_hash)
    if verified:
        identity_service.mark_verified(identity, now=utcnow())
    db.session.commit()
    return identity


def token_for(identity, service):
    """Issue a session for an already-verified identity."""
    _, token = session_service.login(identity, identity.role, service)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def fresh(model, row_id):
    """Re-read a row, discarding anything cached in the test's session."""
    return db.session.get(model, row_id, populate_existing=True)


@pytest.fixture(scope='function')
def customer(app):
    return make_identity('customer', 'alice@example.com', password=TEST_PASSWORD, name='Alice')


@pytest.fixture(scope='function')
def other_customer(app):
    return make_identity('customer', 'bob@example.com', name='Bob')


@pytest.fixture(scope='function')
def seller(app):
    return make_identity('seller', 'shop@example.com', business_name='Paper Crane Gifts')


@pytest.fixture(scope='function')
def other_seller(app):
    return make_identity('seller', 'other-shop@example.com', business_name='Other Shop')


@pytest.fixture(scope='function')
def admin(app):
    return make_identity('admin', 'ops@giftsity.local', name='Ops')


@pytest.fixture(scope='function')
def corporate_user(app):
    return make_identity('corporate', 'buyer@acme.example', company_name='Acme Corp')


@pytest.fixture(scope='function')
def product(app, seller):
    item = Product(seller_id=seller.id, title='Brass Desk Clock', sku='CLK-1', price_cents=2500)
    db.session.add(item)
    db.session.commit()
    return item


@pytest.fixture(scope='function')
def second_product(app, seller):
    item = Product(seller_id=seller.id, title='Linen Gift Wrap', sku='WRP-1', price_cents=400)
    db.session.add(item)
    db.session.commit()
    return item


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(token_for(customer, 'main'))


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(token_for(admin, 'main'))


@pytest.fixture(scope='function')
def seller_headers(seller):
    return auth_headers(token_for(seller, 'seller'))


@pytest.fixture(scope='function')
def corporate_headers(corporate_user):
    return auth_headers(token_for(corporate_user, 'corporate'))
