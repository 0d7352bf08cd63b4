"""
Amount derivation for vouchers.

NET mode: net and VAT rate are entered, gross is derived.
GROSS mode: gross is entered as-is, VAT is not decomposed (rate 0, net == gross).
Transfers carry a single amount and never VAT.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from app.common.exceptions import InvalidAmount
from app.models.voucher import TaxMode

Q2 = Decimal("0.01")
HUNDRED = Decimal("100")
ALLOWED_VAT_RATES = (0, 7, 19)


def D(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    try:
        return Decimal(str(x))
    except InvalidOperation:
        raise InvalidAmount(f"Not a valid amount: {x!r}")


def round2(x: Decimal) -> Decimal:
    return x.quantize(Q2, rounding=ROUND_HALF_UP)


def gross_from_net(net_amount, vat_rate: int) -> Decimal:
    return round2(D(net_amount) * (1 + D(vat_rate) / HUNDRED))


def net_from_gross(gross_amount, vat_rate: int) -> Decimal:
    return round2(D(gross_amount) / (1 + D(vat_rate) / HUNDRED))


@dataclass(frozen=True)
class Amounts:
    tax_mode: TaxMode
    net_amount: Decimal
    vat_rate: int
    vat_amount: Decimal
    gross_amount: Decimal


def _check_rate(vat_rate: int) -> int:
    if vat_rate not in ALLOWED_VAT_RATES:
        raise InvalidAmount(
            f"VAT rate must be one of {ALLOWED_VAT_RATES}, got {vat_rate}",
            {"vat_rate": vat_rate},
        )
    return int(vat_rate)


def _check_non_negative(value: Decimal, field: str) -> Decimal:
    if value < 0:
        raise InvalidAmount(f"{field} must not be negative", {field: str(value)})
    return value


def compute_amounts(
    tax_mode: TaxMode,
    net_amount=None,
    gross_amount=None,
    vat_rate: int = 0,
) -> Amounts:
    """Derive the full amount set from the authoritative input of the given tax mode."""
    if tax_mode == TaxMode.NET:
        if net_amount is None:
            raise InvalidAmount("net_amount is required in NET mode")
        rate = _check_rate(vat_rate)
        net = round2(_check_non_negative(D(net_amount), "net_amount"))
        gross = gross_from_net(net, rate)
        return Amounts(TaxMode.NET, net, rate, gross - net, gross)

    if gross_amount is None:
        raise InvalidAmount("gross_amount is required in GROSS mode")
    gross = round2(_check_non_negative(D(gross_amount), "gross_amount"))
    return Amounts(TaxMode.GROSS, gross, 0, Decimal("0.00"), gross)


def compute_transfer_amounts(amount) -> Amounts:
    return compute_amounts(TaxMode.GROSS, gross_amount=amount)


def rederive_amounts(
    current: Amounts,
    tax_mode: Optional[TaxMode] = None,
    net_amount=None,
    gross_amount=None,
    vat_rate: Optional[int] = None,
) -> Amounts:
    """
    Merge an amount patch into the amounts a voucher already holds.

    When the target mode's authoritative field is not part of the patch it is
    re-derived from whatever the voucher or the patch already holds, so a value
    the user typed is carried over instead of being dropped.
    """
    mode = tax_mode or current.tax_mode
    rate = current.vat_rate if vat_rate is None else vat_rate

    if mode == TaxMode.NET:
        if net_amount is not None:
            net = net_amount
        elif gross_amount is not None:
            net = net_from_gross(gross_amount, _check_rate(rate))
        elif current.tax_mode == TaxMode.NET:
            net = current.net_amount
        else:
            net = net_from_gross(current.gross_amount, _check_rate(rate))
        return compute_amounts(TaxMode.NET, net_amount=net, vat_rate=rate)

    if gross_amount is not None:
        gross = gross_amount
    elif net_amount is not None:
        gross = gross_from_net(net_amount, _check_rate(rate))
    elif current.tax_mode == TaxMode.GROSS:
        gross = current.gross_amount
    else:
        gross = gross_from_net(current.net_amount, _check_rate(rate))
    return compute_amounts(TaxMode.GROSS, gross_amount=gross)
