"""
Document emission tests (fiscal gateway on httpx.MockTransport).

Verifies:
- preconditions fail before any gateway call
- the sale closes only after SUNAT accepted the document
- gateway failures leave the sale open and retryable
- unknown submission outcomes block the sale until resolved
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from mesapos.errors import Conflict, GatewayError, SaleNotOpen, UnknownOutcome, ValidationError
from mesapos.models import Customer, EmissionAttempt, FiscalDocument, SaleEvent, SaleItem
from mesapos.services import emission_service, sales_service
from mesapos.services.emission_service import TOTAL_MISMATCH_EVENT, EmissionStatus
from mesapos.services.event_service import UNKNOWN_OUTCOME_EVENT
from mesapos.services.inventory_service import get_stock


RUC_CUSTOMER = {
    "document_type": "RUC",
    "document_number": "20100070970",
    "name": "RESTAURANTES DEL SUR S.A.C.",
    "address": "AV. AREQUIPA 123, LIMA",
    "email": "Compras@RestaurantesSur.pe",
}


@pytest.fixture
def open_sale(db_session, branch, table, tracked_product):
    return sales_service.create_sale(
        branch.id,
        table_id=table.id,
        items=[{"product_id": tracked_product.id, "quantity": 2}],
    )


def _attempts(db_session, sale_id):
    return db_session.query(EmissionAttempt).filter_by(sale_id=sale_id).order_by(EmissionAttempt.id).all()


# =============================================================================
# PRECONDITIONS
# =============================================================================


class TestPreconditions:

    def test_factura_with_dni_fails_before_gateway(self, db_session, open_sale, fake_gateway):
        customer = dict(RUC_CUSTOMER, document_type="DNI", document_number="45678912")
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.emit_factura(open_sale.id, customer=customer))

        assert fake_gateway.requests == []
        assert _attempts(db_session, open_sale.id) == []
        assert sales_service.get_sale(open_sale.id)["status"] == "open"

    def test_factura_without_customer(self, db_session, open_sale, fake_gateway):
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.emit_factura(open_sale.id))
        assert fake_gateway.requests == []

    def test_factura_without_name(self, db_session, open_sale, fake_gateway):
        customer = dict(RUC_CUSTOMER, name="  ")
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.emit_factura(open_sale.id, customer=customer))
        assert fake_gateway.requests == []

    def test_sale_without_items(self, db_session, branch, fake_gateway):
        sale = sales_service.create_sale(branch.id)
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.emit_boleta(sale.id))
        assert fake_gateway.requests == []

    def test_closed_sale(self, db_session, open_sale, fake_gateway):
        sales_service.close_sale(open_sale.id)
        with pytest.raises(SaleNotOpen):
            asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert fake_gateway.requests == []

    def test_invalid_payment_method(self, db_session, open_sale, fake_gateway):
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.emit_boleta(open_sale.id, payment_method="Yape Plin"))
        assert fake_gateway.requests == []


# =============================================================================
# SUCCESS
# =============================================================================


class TestEmitSuccess:

    def test_boleta_closes_sale(self, db_session, branch, table, tracked_product, open_sale, fake_gateway):
        result = asyncio.run(emission_service.emit_boleta(open_sale.id, payment_method="Contado"))

        assert result.status is EmissionStatus.SUCCESS
        assert result.document_id == "B001-00000123"
        assert result.file_name == "20123456789-03-B001-00000123"
        assert fake_gateway.paths == [
            "/apifact/invoice/next-number",
            "/apifact/invoice/create",
            "/apifact/invoice/send",
        ]

        data = sales_service.get_sale(open_sale.id)
        assert data["status"] == "closed"
        assert data["document_type"] == "boleta"
        assert data["document_id"] == "B001-00000123"
        assert data["payment_method"] == "Contado"
        assert data["document"]["pdf_url"] == "https://files.test/B001-00000123.pdf"
        assert data["document"]["hash"] == "abc123hash"

        # stock stays consumed, table freed
        assert get_stock(branch.id, tracked_product.id) == 3
        db_session.refresh(table)
        assert table.status == "available"

    def test_idempotency_key_on_every_call(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        attempt = _attempts(db_session, open_sale.id)[0]
        keys = {headers.get("Idempotency-Key") for _, _, headers in fake_gateway.requests}
        assert keys == {attempt.attempt_key}
        assert attempt.status == "succeeded"

    def test_boleta_without_customer_is_anonymous(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        _, body, _ = fake_gateway.requests[1]
        assert body["claveSecreta"] == "test-secret"
        assert body["tipoDoc"] == "03"
        assert body["serie"] == "B001"
        assert body["correlativo"] == "00000123"
        assert body["cliente"]["numDoc"] == "00000000"
        assert body["cliente"]["rznSocial"] == "CLIENTE VARIOS"
        assert body["total"] == 50.0
        assert body["totalTexto"] == "SON CINCUENTA CON 00/100 SOLES"
        assert body["company"]["ruc"] == "20123456789"

    def test_factura_upserts_customer(self, db_session, open_sale, fake_gateway):
        result = asyncio.run(emission_service.emit_factura(open_sale.id, customer=RUC_CUSTOMER))

        assert result.document_id == "F001-00000123"
        customer = db_session.query(Customer).filter_by(document_number="20100070970").one()
        assert customer.email == "compras@restaurantessur.pe"

        data = sales_service.get_sale(open_sale.id)
        assert data["customer_id"] == customer.id
        assert data["document_type"] == "factura"

        _, body, _ = fake_gateway.requests[1]
        assert body["tipoDoc"] == "01"
        assert body["cliente"]["tipoDoc"] == "6"
        assert body["cliente"]["numDoc"] == "20100070970"

    def test_known_customer_without_changes_is_reused(self, db_session, open_sale, ruc_customer, fake_gateway):
        customer = dict(RUC_CUSTOMER, name="otro nombre")
        metadata = {"customer_id": ruc_customer.id, "has_changes": False}
        asyncio.run(emission_service.emit_factura(open_sale.id, customer=customer, metadata=metadata))

        db_session.refresh(ruc_customer)
        assert ruc_customer.name == "RESTAURANTES DEL SUR S.A.C."

    def test_customer_email_forwarded_on_submit(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id, customer_email="cliente@correo.pe"))
        _, body, _ = fake_gateway.requests[2]
        assert body["customerEmail"] == "cliente@correo.pe"


# =============================================================================
# DEFINITE FAILURES
# =============================================================================


class TestGatewayFailures:

    def test_rejected_generation_leaves_sale_open(self, db_session, branch, tracked_product, open_sale, fake_gateway):
        fake_gateway.fail_on = "/apifact/invoice/create"
        with pytest.raises(GatewayError) as exc:
            asyncio.run(emission_service.emit_boleta(open_sale.id))

        assert exc.value.message == "Serie no autorizada"
        assert sales_service.get_sale(open_sale.id)["status"] == "open"
        assert get_stock(branch.id, tracked_product.id) == 3
        attempt = _attempts(db_session, open_sale.id)[0]
        assert attempt.status == "failed"
        assert attempt.error_message == "Serie no autorizada"
        assert emission_service.emission_state(open_sale.id)["status"] == "error"

    def test_retry_after_failure(self, db_session, open_sale, fake_gateway):
        fake_gateway.fail_on = "/apifact/invoice/next-number"
        with pytest.raises(GatewayError):
            asyncio.run(emission_service.emit_boleta(open_sale.id))

        fake_gateway.fail_on = None
        result = asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert result.status is EmissionStatus.SUCCESS
        attempts = _attempts(db_session, open_sale.id)
        assert [a.status for a in attempts] == ["failed", "succeeded"]
        assert attempts[0].attempt_key != attempts[1].attempt_key

    def test_sunat_rejection(self, db_session, open_sale, fake_gateway):
        fake_gateway.send_success = False
        with pytest.raises(GatewayError) as exc:
            asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert exc.value.message == "El RUC no existe"
        assert sales_service.get_sale(open_sale.id)["status"] == "open"

    def test_connect_error_on_submit_is_definite(self, db_session, open_sale, fake_gateway):
        fake_gateway.raise_on = ("/apifact/invoice/send", httpx.ConnectError("connection refused"))
        with pytest.raises(GatewayError):
            asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert _attempts(db_session, open_sale.id)[0].status == "failed"

    def test_unreadable_submit_answer_is_unknown(self, db_session, open_sale, fake_gateway):
        fake_gateway.send_raw = b"<html>upstream proxy</html>"
        with pytest.raises(UnknownOutcome):
            asyncio.run(emission_service.emit_boleta(open_sale.id))

        attempt = _attempts(db_session, open_sale.id)[0]
        assert attempt.status == "unknown"
        assert sales_service.get_sale(open_sale.id)["status"] == "open"
        assert [a.id for a in emission_service.list_unresolved_attempts()] == [attempt.id]

    def test_submit_answer_without_respuesta_object_is_unknown(self, db_session, open_sale, fake_gateway):
        fake_gateway.send_raw = b'{"respuesta": "ok"}'
        with pytest.raises(UnknownOutcome):
            asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert _attempts(db_session, open_sale.id)[0].status == "unknown"


# =============================================================================
# EDITS WHILE AN EMISSION IS IN FLIGHT
# =============================================================================


class TestEditsDuringEmission:

    def test_item_edit_is_refused(self, db_session, branch, tracked_product, open_sale, fake_gateway):
        refused = []

        def edit_items(path):
            if path != "/apifact/invoice/create":
                return
            try:
                sales_service.set_sale_items(open_sale.id, [{"product_id": tracked_product.id, "quantity": 3}])
            except Conflict as e:
                refused.append(e)

        fake_gateway.on_request = edit_items
        result = asyncio.run(emission_service.emit_boleta(open_sale.id))

        assert result.status is EmissionStatus.SUCCESS
        assert len(refused) == 1
        sent = [body for path, body, _ in fake_gateway.requests if path == "/apifact/invoice/create"][0]
        data = sales_service.get_sale(open_sale.id)
        assert data["status"] == "closed"
        assert [i["quantity"] for i in data["items"]] == [2]
        assert Decimal(str(data["total"])) == Decimal("50.00")
        assert Decimal(str(sent["total"])) == Decimal("50.00")
        assert get_stock(branch.id, tracked_product.id) == 3

    def test_detail_edit_is_refused(self, db_session, open_sale, fake_gateway):
        refused = []

        def edit_notes(path):
            if path == "/apifact/invoice/send":
                try:
                    sales_service.update_sale_details(open_sale.id, notes="sin cebolla")
                except Conflict as e:
                    refused.append(e)

        fake_gateway.on_request = edit_notes
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert len(refused) == 1
        assert sales_service.get_sale(open_sale.id)["notes"] is None

    def test_total_drift_is_recorded(self, db_session, open_sale, fake_gateway):
        def write_behind_engine(path):
            if path != "/apifact/invoice/create":
                return
            item = db_session.query(SaleItem).filter_by(sale_id=open_sale.id).one()
            item.quantity = 3
            item.total_price = Decimal("75.00")
            db_session.commit()

        fake_gateway.on_request = write_behind_engine
        asyncio.run(emission_service.emit_boleta(open_sale.id))

        events = db_session.query(SaleEvent).filter_by(sale_id=open_sale.id, event_type=TOTAL_MISMATCH_EVENT).all()
        assert len(events) == 1
        payload = json.loads(events[0].payload)
        assert Decimal(payload["document_total"]) == Decimal("50.00")
        assert Decimal(payload["sale_total"]) == Decimal("75.00")

    def test_no_drift_event_on_clean_emission(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert db_session.query(SaleEvent).filter_by(event_type=TOTAL_MISMATCH_EVENT).count() == 0


# =============================================================================
# UNKNOWN OUTCOME
# =============================================================================


class TestUnknownOutcome:

    @pytest.fixture
    def unknown_attempt(self, db_session, open_sale, fake_gateway):
        fake_gateway.raise_on = ("/apifact/invoice/send", httpx.ReadTimeout("timed out"))
        with pytest.raises(UnknownOutcome):
            asyncio.run(emission_service.emit_boleta(open_sale.id, payment_method="Tarjeta"))
        fake_gateway.raise_on = None
        return _attempts(db_session, open_sale.id)[0]

    def test_recorded_and_flagged(self, db_session, open_sale, unknown_attempt):
        assert unknown_attempt.status == "unknown"
        assert unknown_attempt.correlativo == "00000123"
        events = db_session.query(SaleEvent).filter_by(sale_id=open_sale.id, event_type=UNKNOWN_OUTCOME_EVENT).all()
        assert len(events) == 1
        assert [a.id for a in emission_service.list_unresolved_attempts()] == [unknown_attempt.id]
        assert sales_service.get_sale(open_sale.id)["status"] == "open"

    def test_blocks_new_emission(self, db_session, open_sale, unknown_attempt, fake_gateway):
        sent = len(fake_gateway.requests)
        with pytest.raises(Conflict):
            asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert len(fake_gateway.requests) == sent

    def test_blocks_plain_close_and_cancel(self, db_session, branch, tracked_product, open_sale, unknown_attempt):
        with pytest.raises(Conflict):
            emission_service.close_without_document(open_sale.id)
        with pytest.raises(Conflict):
            sales_service.cancel_sale(open_sale.id)
        with pytest.raises(Conflict):
            sales_service.close_sale(open_sale.id, payment_method="Contado")
        assert get_stock(branch.id, tracked_product.id) == 3
        assert sales_service.get_sale(open_sale.id)["closed_at"] is None

    def test_blocks_item_and_detail_edits(self, db_session, branch, tracked_product, open_sale, unknown_attempt):
        with pytest.raises(Conflict):
            sales_service.set_sale_items(open_sale.id, [{"product_id": tracked_product.id, "quantity": 1}])
        with pytest.raises(Conflict):
            sales_service.update_sale_details(open_sale.id, notes="otra mesa")
        data = sales_service.get_sale(open_sale.id)
        assert [i["quantity"] for i in data["items"]] == [2]
        assert get_stock(branch.id, tracked_product.id) == 3

    def test_resolve_as_issued(self, db_session, open_sale, unknown_attempt):
        emission_service.resolve_unknown_emission(unknown_attempt.id, True, pdf_url="https://files.test/manual.pdf")

        data = sales_service.get_sale(open_sale.id)
        assert data["status"] == "closed"
        assert data["document_id"] == "B001-00000123"
        assert data["payment_method"] == "Tarjeta"
        assert data["document"]["pdf_url"] == "https://files.test/manual.pdf"
        assert emission_service.list_unresolved_attempts() == []
        assert emission_service.emission_state(open_sale.id)["status"] == "success"

    def test_resolve_as_not_issued_allows_retry(self, db_session, open_sale, unknown_attempt, fake_gateway):
        emission_service.resolve_unknown_emission(unknown_attempt.id, False)
        assert emission_service.emission_state(open_sale.id)["status"] == "idle"

        fake_gateway.next_number = "00000124"
        result = asyncio.run(emission_service.emit_boleta(open_sale.id))
        assert result.document_id == "B001-00000124"

    def test_resolve_twice(self, db_session, open_sale, unknown_attempt):
        emission_service.resolve_unknown_emission(unknown_attempt.id, False)
        with pytest.raises(Conflict):
            emission_service.resolve_unknown_emission(unknown_attempt.id, True)


# =============================================================================
# CLOSE WITHOUT DOCUMENT / VOID / STATE
# =============================================================================


class TestCloseWithoutDocument:

    def test_closes_with_customer(self, db_session, open_sale, fake_gateway):
        result = emission_service.close_without_document(
            open_sale.id, payment_method="Transferencia", customer=RUC_CUSTOMER
        )
        assert result.status is EmissionStatus.CLOSED
        assert fake_gateway.requests == []

        data = sales_service.get_sale(open_sale.id)
        assert data["status"] == "closed"
        assert data["document_id"] is None
        assert data["customer"]["document_number"] == "20100070970"
        assert emission_service.emission_state(open_sale.id)["status"] == "closed"

    def test_second_call(self, db_session, open_sale):
        emission_service.close_without_document(open_sale.id)
        with pytest.raises(SaleNotOpen):
            emission_service.close_without_document(open_sale.id)


class TestVoidDocument:

    def test_voids_issued_document(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        doc = asyncio.run(emission_service.void_document(open_sale.id, "Error en el monto"))

        assert doc.status == "voided"
        assert doc.void_reason == "Error en el monto"
        assert fake_gateway.paths[-1] == "/apifact/invoice/void"
        assert sales_service.get_sale(open_sale.id)["status"] == "closed"

    def test_requires_reason(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.void_document(open_sale.id, "  "))

    def test_gateway_failure_keeps_document(self, db_session, open_sale, fake_gateway):
        asyncio.run(emission_service.emit_boleta(open_sale.id))
        fake_gateway.fail_on = "/apifact/invoice/void"
        with pytest.raises(GatewayError):
            asyncio.run(emission_service.void_document(open_sale.id, "duplicado"))
        doc = db_session.query(FiscalDocument).filter_by(sale_id=open_sale.id).one()
        assert doc.status == "issued"

    def test_open_sale_has_nothing_to_void(self, db_session, open_sale, fake_gateway):
        with pytest.raises(ValidationError):
            asyncio.run(emission_service.void_document(open_sale.id, "duplicado"))


def test_state_starts_idle(db_session, open_sale):
    state = emission_service.emission_state(open_sale.id)
    assert state["status"] == "idle"
    assert state["last_attempt"] is None
