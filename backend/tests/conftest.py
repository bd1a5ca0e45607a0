"""
Pytest fixtures for MesaPOS backend tests.

Provides test database setup, a branch with products/tables/customers, a
fake fiscal gateway on httpx.MockTransport and the test client.
"""

import json
from decimal import Decimal

import httpx
import pytest
from mesapos import create_app
from mesapos.extensions import db
from mesapos.models import Branch, BranchTable, Product, Staff
from mesapos.services import customer_service, inventory_service
from mesapos.services.fiscal_gateway import FiscalGatewayClient


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'FISCAL_GATEWAY_URL': 'https://gateway.test',
        'FISCAL_GATEWAY_SECRET': 'test-secret',
        'COMPANY_RUC': '20123456789',
        'IDENTITY_LOOKUP_URL': 'https://lookup.test',
        # Shift gating is switched on per test where needed
        'REQUIRE_OPEN_SHIFT': False,
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


# =============================================================================
# CATALOG / BRANCH
# =============================================================================


@pytest.fixture(scope='function')
def branch(db_session):
    """Branch with boleta and factura series."""
    branch = Branch(name="Sucursal Centro", serie_boleta="B001", serie_factura="F001")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Sucursal Norte", serie_boleta="B002", serie_factura="F002")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def tracked_product(db_session, branch):
    """Inventory-tracked product, negative sale disallowed, stock 5."""
    product = Product(
        name="Lomo Saltado",
        price=Decimal("25.00"),
        inventory_activated=True,
        allow_negative_sale=False,
    )
    db_session.add(product)
    db_session.commit()
    inventory_service.set_stock(branch.id, product.id, 5)
    return product


@pytest.fixture(scope='function')
def untracked_product(db_session):
    product = Product(name="Chicha Morada", price=Decimal("8.50"), inventory_activated=False)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def negative_product(db_session, branch):
    """Tracked product that may go below zero (stock 1)."""
    product = Product(
        name="Pisco Sour",
        price=Decimal("18.00"),
        inventory_activated=True,
        allow_negative_sale=True,
    )
    db_session.add(product)
    db_session.commit()
    inventory_service.set_stock(branch.id, product.id, 1)
    return product


@pytest.fixture(scope='function')
def table(db_session, branch):
    table = BranchTable(branch_id=branch.id, label="M1", capacity=4)
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def second_table(db_session, branch):
    table = BranchTable(branch_id=branch.id, label="M2", capacity=2)
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def staff(db_session, branch):
    member = Staff(branch_id=branch.id, name="Rosa Quispe", role="mozo")
    db_session.add(member)
    db_session.commit()
    return member


@pytest.fixture(scope='function')
def inactive_staff(db_session, branch):
    member = Staff(branch_id=branch.id, name="Jorge Huaman", role="mozo", is_active=False)
    db_session.add(member)
    db_session.commit()
    return member


@pytest.fixture(scope='function')
def other_branch_staff(db_session, other_branch):
    member = Staff(branch_id=other_branch.id, name="Lucia Torres", role="cajera")
    db_session.add(member)
    db_session.commit()
    return member


@pytest.fixture(scope='function')
def ruc_customer(db_session):
    return customer_service.upsert_customer(
        "RUC",
        "20100070970",
        "RESTAURANTES DEL SUR S.A.C.",
        address="AV. AREQUIPA 123, LIMA",
    )


# =============================================================================
# FISCAL GATEWAY
# =============================================================================


class FakeGateway:
    """
    Records requests and answers like the MiAPI-style gateway.

    Set `fail_on` to a path to make that step fail, or `raise_on` to a
    (path, exception) pair to simulate transport errors. `send_raw` replaces
    the submission answer with a raw 200 body; `on_request(path)` runs before
    each answer, while the request is in flight.
    """

    def __init__(self):
        self.requests = []
        self.next_number = "00000123"
        self.fail_on = None
        self.fail_message = "Serie no autorizada"
        self.raise_on = None
        self.send_success = True
        self.send_raw = None
        self.on_request = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body, request.headers))
        path = request.url.path
        if self.on_request is not None:
            self.on_request(path)

        if self.raise_on and self.raise_on[0] == path:
            raise self.raise_on[1]
        if self.fail_on == path:
            return httpx.Response(400, json={"message": self.fail_message})

        if path == "/apifact/invoice/next-number":
            return httpx.Response(200, json={"correlativo": self.next_number})
        if path == "/apifact/invoice/create":
            return httpx.Response(200, json={"success": True, "xml": "<Invoice/>"})
        if path == "/apifact/invoice/send":
            comprobante = body["comprobante"]
            if self.send_raw is not None:
                return httpx.Response(200, content=self.send_raw)
            if not self.send_success:
                return httpx.Response(200, json={"respuesta": {"success": False, "mensaje": "El RUC no existe"}})
            return httpx.Response(200, json={
                "respuesta": {
                    "success": True,
                    "hash": "abc123hash",
                    "xml-firmado": f"https://files.test/{comprobante['serie']}-{comprobante['correlativo']}.xml",
                    "pdf-a4": f"https://files.test/{comprobante['serie']}-{comprobante['correlativo']}.pdf",
                    "cdr": f"https://files.test/R-{comprobante['serie']}-{comprobante['correlativo']}.zip",
                    "mensaje": "La Boleta numero fue aceptada",
                },
            })
        if path == "/apifact/invoice/void":
            return httpx.Response(200, json={"success": True, "ticket": "1700000000000"})
        return httpx.Response(404, json={"error": "not found"})

    @property
    def paths(self):
        return [path for path, _, _ in self.requests]

    def client(self) -> FiscalGatewayClient:
        return FiscalGatewayClient(
            base_url="https://gateway.test",
            secret="test-secret",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(scope='function')
def fake_gateway(app, monkeypatch):
    """Fake gateway installed as the app's fiscal gateway client."""
    fake = FakeGateway()
    monkeypatch.setitem(app.extensions, "fiscal_gateway", fake.client())
    return fake
