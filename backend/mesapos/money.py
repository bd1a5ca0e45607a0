# Overview: Decimal currency helpers (cent rounding, IGV split, amount in words).

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[Decimal, int, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
VALID_IGV_PERCENTAGES = (10, 18)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(value: Number) -> Decimal:
    """Round half-up at the cent boundary."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: int, unit_price: Number) -> Decimal:
    return round_cents(to_decimal(unit_price) * quantity)


def sum_money(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return round_cents(total)


def net_from_gross(gross: Number, igv_percentage: int) -> Decimal:
    """Back-compute the taxable (net) value of a tax-inclusive amount."""
    _check_igv(igv_percentage)
    rate = Decimal(1) + Decimal(igv_percentage) / Decimal(100)
    return round_cents(to_decimal(gross) / rate)


def igv_of_net(net: Number, igv_percentage: int) -> Decimal:
    _check_igv(igv_percentage)
    return round_cents(to_decimal(net) * Decimal(igv_percentage) / Decimal(100))


def _check_igv(igv_percentage: int) -> None:
    if igv_percentage not in VALID_IGV_PERCENTAGES:
        raise ValueError("IGV percentage must be 10 or 18")


# ---------------------------------------------------------------------------
# Amount in words (leyenda "SON ... CON nn/100 SOLES")
# ---------------------------------------------------------------------------

_UNITS = ["", "uno", "dos", "tres", "cuatro", "cinco", "seis", "siete", "ocho", "nueve"]
_TEENS = {
    10: "diez", 11: "once", 12: "doce", 13: "trece", 14: "catorce",
    15: "quince", 16: "dieciséis", 17: "diecisiete", 18: "dieciocho", 19: "diecinueve",
}
_TWENTIES = [
    "veinte", "veintiuno", "veintidós", "veintitrés", "veinticuatro",
    "veinticinco", "veintiséis", "veintisiete", "veintiocho", "veintinueve",
]
_TENS = {
    3: "treinta", 4: "cuarenta", 5: "cincuenta", 6: "sesenta",
    7: "setenta", 8: "ochenta", 9: "noventa",
}
_HUNDREDS = [
    "", "ciento", "doscientos", "trescientos", "cuatrocientos", "quinientos",
    "seiscientos", "setecientos", "ochocientos", "novecientos",
]


def _below_hundred(n: int) -> str:
    if n < 10:
        return _UNITS[n]
    if n < 20:
        return _TEENS[n]
    if n < 30:
        return _TWENTIES[n - 20]
    tens, unit = divmod(n, 10)
    if unit == 0:
        return _TENS[tens]
    return f"{_TENS[tens]} y {_UNITS[unit]}"


def _below_thousand(n: int) -> str:
    if n == 100:
        return "cien"
    hundreds, rest = divmod(n, 100)
    parts = []
    if hundreds:
        parts.append(_HUNDREDS[hundreds])
    if rest:
        parts.append(_below_hundred(rest))
    return " ".join(parts)


def _apocope(words: str) -> str:
    # "uno" shortens before "mil" / "millones"
    if words.endswith("veintiuno"):
        return words[: -len("veintiuno")] + "veintiún"
    if words.endswith("uno"):
        return words[:-3] + "un"
    return words


def integer_to_words(n: int) -> str:
    if n < 0:
        raise ValueError("amount cannot be negative")
    if n >= 1_000_000_000:
        raise ValueError("amount too large")
    if n == 0:
        return "cero"

    millions, rest = divmod(n, 1_000_000)
    thousands, units = divmod(rest, 1000)

    parts = []
    if millions:
        parts.append("un millón" if millions == 1 else f"{_apocope(_below_thousand(millions))} millones")
    if thousands:
        parts.append("mil" if thousands == 1 else f"{_apocope(_below_thousand(thousands))} mil")
    if units:
        parts.append(_below_thousand(units))
    return " ".join(parts)


def amount_in_words(amount: Number, currency_name: str = "SOLES") -> str:
    """123.5 -> 'SON CIENTO VEINTITRÉS CON 50/100 SOLES'."""
    value = round_cents(amount)
    integer_part = int(value)
    cents = int((value - integer_part) * 100)
    words = integer_to_words(integer_part).upper()
    return f"SON {words} CON {cents:02d}/100 {currency_name}"
