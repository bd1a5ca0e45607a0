# Overview: Builds the fiscal gateway payload (comprobante, cliente, items) for a sale.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..money import amount_in_words, net_from_gross, round_cents, sum_money, to_decimal
from ..models.documents import SUNAT_DOCUMENT_CODES

# SUNAT catalog 06 identity document codes
IDENTITY_DOCUMENT_CODES = {"DNI": "1", "RUC": "6"}

ANONYMOUS_CUSTOMER = {
    "document_type": "DNI",
    "document_number": "00000000",
    "name": "CLIENTE VARIOS",
    "address": "NO ESPECIFICADO",
}

CURRENCY_NAMES = {"PEN": "SOLES", "USD": "DÓLARES AMERICANOS"}


@dataclass(frozen=True)
class Issuer:
    ruc: str
    name: str
    commercial_name: str = ""
    address: str = ""

    @classmethod
    def from_config(cls, config) -> "Issuer":
        return cls(
            ruc=config.get("COMPANY_RUC", ""),
            name=config.get("COMPANY_NAME", ""),
            commercial_name=config.get("COMPANY_COMMERCIAL_NAME", ""),
            address=config.get("COMPANY_ADDRESS", ""),
        )


def customer_snapshot(customer) -> dict:
    """Customer row or dict -> cliente block; None means the anonymous boleta customer."""
    if customer is None:
        data = ANONYMOUS_CUSTOMER
    elif isinstance(customer, dict):
        data = customer
    else:
        data = {
            "document_type": customer.document_type,
            "document_number": customer.document_number,
            "name": customer.name,
            "address": customer.address,
        }
    return {
        "codigoPais": "PE",
        "tipoDoc": IDENTITY_DOCUMENT_CODES[data["document_type"]],
        "numDoc": data["document_number"],
        "rznSocial": data["name"],
        "direccion": data.get("address") or ANONYMOUS_CUSTOMER["address"],
    }


def build_item(item, igv_percentage: int, unit_value: Decimal | None = None) -> dict:
    """
    One taxed (gravado) line. The line total is split into base + IGV so
    the two always add back to what the customer paid.
    """
    gross_total = round_cents(item.total_price)
    base = net_from_gross(gross_total, igv_percentage)
    igv = gross_total - base
    unit_price = round_cents(item.unit_price)
    if unit_value is None:
        unit_value = net_from_gross(unit_price, igv_percentage)

    return {
        "codProducto": str(item.product_id),
        "descripcion": item.product_name,
        "unidad": "NIU",
        "tipoPrecio": "01",
        "cantidad": item.quantity,
        "mtoBaseIgv": float(base),
        "mtoValorUnitario": float(round_cents(unit_value)),
        "mtoPrecioUnitario": float(unit_price),
        "codeAfectAlt": 10,
        "codeAfect": 1000,
        "nameAfect": "IGV",
        "tipoAfect": "VAT",
        "igvPorcent": igv_percentage,
        "igv": float(igv),
        "igvOpi": float(igv),
    }


def build_comprobante(
    *,
    total,
    items,
    document_type: str,
    serie: str,
    correlativo: str,
    customer=None,
    issued_at: datetime,
    default_igv: int = 18,
    currency: str = "PEN",
    payment_type: str = "Contado",
    notes: str | None = None,
    products: dict | None = None,
    issuer: Issuer | None = None,
) -> dict:
    """
    Request body for the gateway's generate step (without claveSecreta).

    products maps product_id -> Product and supplies igv_percentage and the
    catalog unit_value when the line was sold at catalog price.
    """
    products = products or {}
    lines = []
    for item in items:
        product = products.get(item.product_id)
        pct = (product.igv_percentage if product is not None else None) or default_igv
        unit_value = None
        if (
            product is not None
            and product.unit_value is not None
            and to_decimal(product.price) == to_decimal(item.unit_price)
        ):
            unit_value = to_decimal(product.unit_value)
        lines.append(build_item(item, pct, unit_value))

    oper_gravadas = sum_money(Decimal(str(line["mtoBaseIgv"])) for line in lines)
    igv_total = sum_money(Decimal(str(line["igv"])) for line in lines)
    total = round_cents(total)

    igv_op = lines[0]["igvPorcent"] if lines else default_igv
    body = {
        "tipoDoc": SUNAT_DOCUMENT_CODES[document_type],
        "serie": serie,
        "correlativo": correlativo,
        "fechaEmision": issued_at.strftime("%Y-%m-%d"),
        "horaEmision": issued_at.strftime("%H:%M:%S"),
        "tipoMoneda": currency,
        "tipoPago": payment_type,
        "total": float(total),
        "mtoIGV": float(igv_total),
        "igvOp": igv_op,
        "mtoOperGravadas": float(oper_gravadas),
        "totalTexto": amount_in_words(total, CURRENCY_NAMES.get(currency, currency)),
        "cliente": customer_snapshot(customer),
        "items": lines,
    }
    if issuer is not None and issuer.ruc:
        body["company"] = {
            "ruc": issuer.ruc,
            "razonSocial": issuer.name,
            "nombreComercial": issuer.commercial_name or issuer.name,
            "address": {"direccion": issuer.address},
        }
    if notes:
        body["observacion"] = notes
    return body


def document_number(serie: str, correlativo: str) -> str:
    return f"{serie}-{correlativo}"


def sunat_file_name(ruc: str, document_type: str, serie: str, correlativo: str) -> str:
    """SUNAT file name: RUC-TT-SERIE-CORRELATIVO."""
    return f"{ruc}-{SUNAT_DOCUMENT_CODES[document_type]}-{serie}-{correlativo}"
