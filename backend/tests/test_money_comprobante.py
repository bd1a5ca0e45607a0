"""
Money helpers and comprobante payload tests.
"""

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from mesapos.money import amount_in_words, integer_to_words, line_total, net_from_gross, round_cents, sum_money
from mesapos.services.comprobante import (
    build_comprobante,
    build_item,
    customer_snapshot,
    document_number,
    sunat_file_name,
)


def _item(product_id, name, quantity, unit_price):
    unit_price = Decimal(unit_price)
    return SimpleNamespace(
        product_id=product_id,
        product_name=name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=line_total(quantity, unit_price),
    )


# =============================================================================
# MONEY
# =============================================================================


class TestMoney:

    def test_round_half_up(self):
        assert round_cents("2.345") == Decimal("2.35")
        assert round_cents("2.344") == Decimal("2.34")

    def test_line_total(self):
        assert line_total(3, "0.10") == Decimal("0.30")

    def test_sum(self):
        assert sum_money(["0.10", "0.20", Decimal("1")]) == Decimal("1.30")
        assert sum_money([]) == Decimal("0.00")

    def test_net_from_gross(self):
        assert net_from_gross("118.00", 18) == Decimal("100.00")
        assert net_from_gross("110.00", 10) == Decimal("100.00")

    def test_invalid_igv(self):
        with pytest.raises(ValueError):
            net_from_gross("100", 12)

    @pytest.mark.parametrize(
        "n,words",
        [
            (0, "cero"),
            (1, "uno"),
            (16, "dieciséis"),
            (21, "veintiuno"),
            (45, "cuarenta y cinco"),
            (100, "cien"),
            (101, "ciento uno"),
            (1000, "mil"),
            (21000, "veintiún mil"),
            (1500000, "un millón quinientos mil"),
        ],
    )
    def test_integer_to_words(self, n, words):
        assert integer_to_words(n) == words

    def test_amount_in_words(self):
        assert amount_in_words(Decimal("123.5")) == "SON CIENTO VEINTITRÉS CON 50/100 SOLES"


# =============================================================================
# COMPROBANTE
# =============================================================================


class TestComprobante:

    def test_item_split_adds_back_to_total(self):
        line = build_item(_item(1, "Lomo Saltado", 3, "25.00"), 18)
        assert line["mtoPrecioUnitario"] == 25.0
        assert line["mtoBaseIgv"] == 63.56
        assert line["igv"] == 11.44
        assert Decimal(str(line["mtoBaseIgv"])) + Decimal(str(line["igv"])) == Decimal("75.00")

    def test_body(self):
        items = [_item(1, "Lomo Saltado", 2, "25.00"), _item(2, "Chicha Morada", 1, "8.50")]
        body = build_comprobante(
            total=Decimal("58.50"),
            items=items,
            document_type="boleta",
            serie="B001",
            correlativo="00000045",
            issued_at=datetime(2026, 10, 17, 19, 30, 5),
            notes="mesa 4",
        )
        assert body["tipoDoc"] == "03"
        assert body["fechaEmision"] == "2026-10-17"
        assert body["horaEmision"] == "19:30:05"
        assert body["tipoMoneda"] == "PEN"
        assert body["total"] == 58.5
        assert Decimal(str(body["mtoOperGravadas"])) + Decimal(str(body["mtoIGV"])) == Decimal("58.50")
        assert body["totalTexto"] == "SON CINCUENTA Y OCHO CON 50/100 SOLES"
        assert body["observacion"] == "mesa 4"
        assert len(body["items"]) == 2

    def test_product_igv_and_unit_value(self):
        products = {1: SimpleNamespace(price=Decimal("11.00"), unit_value=Decimal("10.00"), igv_percentage=10)}
        body = build_comprobante(
            total=Decimal("11.00"),
            items=[_item(1, "Menú", 1, "11.00")],
            document_type="boleta",
            serie="B001",
            correlativo="1",
            issued_at=datetime(2026, 1, 1),
            products=products,
        )
        line = body["items"][0]
        assert line["igvPorcent"] == 10
        assert line["mtoValorUnitario"] == 10.0
        assert body["igvOp"] == 10

    def test_anonymous_customer(self):
        assert customer_snapshot(None)["rznSocial"] == "CLIENTE VARIOS"
        assert customer_snapshot(None)["tipoDoc"] == "1"

    def test_ruc_customer(self):
        cliente = customer_snapshot({
            "document_type": "RUC",
            "document_number": "20100070970",
            "name": "RESTAURANTES DEL SUR S.A.C.",
            "address": None,
        })
        assert cliente["tipoDoc"] == "6"
        assert cliente["direccion"] == "NO ESPECIFICADO"

    def test_numbers(self):
        assert document_number("F001", "00000012") == "F001-00000012"
        assert sunat_file_name("20123456789", "factura", "F001", "00000012") == "20123456789-01-F001-00000012"
