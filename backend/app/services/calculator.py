"""
Calcolatore Importi di Riga e di Documento
Progetto: Gestionale Preventivi e Fatture

Funzioni pure, senza accesso al database e senza conoscenza dello stato
del documento.

Politica di arrotondamento: si arrotonda a 2 decimali (ROUND_HALF_UP)
solo a livello di riga. I totali di documento sono somme dei valori di
riga già arrotondati e non vengono mai riarrotondati.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from app.core.exceptions import InvalidLineInputError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Valori massimi rappresentabili dalle colonne Numeric di righe e documenti
MAX_QUANTITY = Decimal("999999999.999")
MAX_UNIT_PRICE = Decimal("99999999.9999")
MAX_TAX_RATE = Decimal("999.99")
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class LineAmounts:
    """Importi calcolati di una riga."""
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class TaxBreakdownEntry:
    """Riepilogo IVA di una singola aliquota."""
    tax_rate: Decimal
    taxable_base: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    """Totali di documento e riepilogo IVA per aliquota (decrescente)."""
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    tax_breakdown: list[TaxBreakdownEntry] = field(default_factory=list)


def round2(value: Decimal) -> Decimal:
    """Arrotonda al centesimo (arrotondamento commerciale)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _as_decimal(value: Any, field_name: str) -> Decimal:
    """Converte un valore numerico in Decimal finito."""
    if value is None:
        raise InvalidLineInputError(
            f"Il campo '{field_name}' è obbligatorio",
            extra={"field": field_name},
        )
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidLineInputError(
            f"Il campo '{field_name}' non è un numero valido",
            extra={"field": field_name},
        )
    if not result.is_finite():
        raise InvalidLineInputError(
            f"Il campo '{field_name}' deve essere un numero finito",
            extra={"field": field_name},
        )
    return result


def compute_line(
    quantity: Any,
    unit_price: Any,
    discount_percent: Any,
    tax_rate: Any,
) -> LineAmounts:
    """
    Calcola imponibile, IVA e totale di una riga.

    - subtotal = round2(quantity * unit_price * (1 - discount_percent / 100))
    - tax_amount = round2(subtotal * tax_rate / 100)
    - total = subtotal + tax_amount

    Args:
        quantity: Quantità (> 0)
        unit_price: Prezzo unitario (>= 0)
        discount_percent: Sconto percentuale (0-100)
        tax_rate: Aliquota IVA percentuale (>= 0)

    Returns:
        LineAmounts: Importi della riga

    Raises:
        InvalidLineInputError: Se un valore è fuori dal dominio ammesso
    """
    quantity = _as_decimal(quantity, "quantity")
    unit_price = _as_decimal(unit_price, "unit_price")
    discount_percent = _as_decimal(discount_percent, "discount_percent")
    tax_rate = _as_decimal(tax_rate, "tax_rate")

    if quantity <= 0:
        raise InvalidLineInputError(
            "La quantità deve essere maggiore di zero",
            extra={"field": "quantity"},
        )
    if quantity > MAX_QUANTITY:
        raise InvalidLineInputError(
            f"La quantità non può superare {MAX_QUANTITY}",
            extra={"field": "quantity"},
        )
    if unit_price < 0:
        raise InvalidLineInputError(
            "Il prezzo unitario non può essere negativo",
            extra={"field": "unit_price"},
        )
    if unit_price > MAX_UNIT_PRICE:
        raise InvalidLineInputError(
            f"Il prezzo unitario non può superare {MAX_UNIT_PRICE}",
            extra={"field": "unit_price"},
        )
    if discount_percent < 0 or discount_percent > HUNDRED:
        raise InvalidLineInputError(
            "Lo sconto deve essere compreso tra 0 e 100",
            extra={"field": "discount_percent"},
        )
    if tax_rate < 0:
        raise InvalidLineInputError(
            "L'aliquota IVA non può essere negativa",
            extra={"field": "tax_rate"},
        )
    if tax_rate > MAX_TAX_RATE:
        raise InvalidLineInputError(
            f"L'aliquota IVA non può superare {MAX_TAX_RATE}",
            extra={"field": "tax_rate"},
        )

    subtotal = round2(quantity * unit_price * (1 - discount_percent / HUNDRED))
    _check_amount(subtotal, "subtotal")
    tax_amount = round2(subtotal * tax_rate / HUNDRED)
    total = _check_amount(subtotal + tax_amount, "total")
    return LineAmounts(subtotal=subtotal, tax_amount=tax_amount, total=total)


def _check_amount(amount: Decimal, field_name: str) -> Decimal:
    """Verifica che un importo sia rappresentabile in Numeric(12, 2)."""
    if amount > MAX_AMOUNT:
        raise InvalidLineInputError(
            f"L'importo '{field_name}' supera il massimo consentito ({MAX_AMOUNT})",
            extra={"field": field_name},
        )
    return amount


def check_document_totals(totals: DocumentTotals) -> DocumentTotals:
    """
    Verifica che i totali di documento restino rappresentabili.

    Ogni riga è già nei limiti, ma la somma di più righe può superarli.

    Raises:
        InvalidLineInputError: Se il totale supera MAX_AMOUNT
    """
    _check_amount(totals.total, "total")
    return totals


def validate_line(
    concept: Optional[str],
    quantity: Any,
    unit_price: Any,
    discount_percent: Any,
    tax_rate: Any,
) -> LineAmounts:
    """
    Valida una riga completa (voce inclusa) e ne calcola gli importi.

    Raises:
        InvalidLineInputError: Se la voce è vuota o i valori numerici non sono validi
    """
    if concept is None or not concept.strip():
        raise InvalidLineInputError(
            "La voce della riga è obbligatoria",
            extra={"field": "concept"},
        )
    return compute_line(quantity, unit_price, discount_percent, tax_rate)


def aggregate(lines: Iterable[Any]) -> DocumentTotals:
    """
    Aggrega le righe nei totali di documento.

    Le righe possono essere qualunque oggetto con gli attributi
    subtotal, tax_amount e tax_rate (modelli ORM o schemi).
    Il riepilogo IVA raggruppa per aliquota, ordina per aliquota
    decrescente e omette le aliquote con IVA complessiva pari a zero;
    il risultato non dipende dall'ordine delle righe.

    Returns:
        DocumentTotals: Totali e riepilogo IVA
    """
    subtotal = ZERO
    tax_amount = ZERO
    bases: dict[Decimal, Decimal] = {}
    taxes: dict[Decimal, Decimal] = {}

    for line in lines:
        line_subtotal = Decimal(line.subtotal)
        line_tax = Decimal(line.tax_amount)
        # 21 e 21.00 sono la stessa aliquota
        rate = Decimal(line.tax_rate).quantize(CENT)

        subtotal += line_subtotal
        tax_amount += line_tax
        bases[rate] = bases.get(rate, ZERO) + line_subtotal
        taxes[rate] = taxes.get(rate, ZERO) + line_tax

    breakdown = [
        TaxBreakdownEntry(tax_rate=rate, taxable_base=bases[rate], tax_amount=taxes[rate])
        for rate in sorted(taxes, reverse=True)
        if taxes[rate] != 0
    ]

    return DocumentTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=subtotal + tax_amount,
        tax_breakdown=breakdown,
    )
