"""
Remittance file rendering.

CSV columns are fixed:
    loan_id, principal_minor, interest_minor, fees_minor,
    investor_share_minor, servicer_fee_minor

XML is a ``<RemittanceReport>`` with the cycle header, totals and one
``<Item>`` per loan under ``<Items>``.  Both renderers are deterministic:
items are written in loan_id order, so re-rendering an unchanged cycle
yields byte-identical output.
"""

import csv
import io
import xml.etree.ElementTree as ET
from collections.abc import Sequence

from payment_kernel.exceptions import InvalidExportFormatError
from payment_modules.remittance.models import ExportFormat
from payment_modules.remittance.orm import RemittanceCycle, RemittanceItem

CSV_COLUMNS = (
    "loan_id",
    "principal_minor",
    "interest_minor",
    "fees_minor",
    "investor_share_minor",
    "servicer_fee_minor",
)


def _ordered(items: Sequence[RemittanceItem]) -> list[RemittanceItem]:
    return sorted(items, key=lambda item: item.loan_id)


def render_csv(cycle: RemittanceCycle, items: Sequence[RemittanceItem]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for item in _ordered(items):
        writer.writerow([getattr(item, column) for column in CSV_COLUMNS])
    return buffer.getvalue()


def _text(parent: ET.Element, tag: str, value: object) -> None:
    ET.SubElement(parent, tag).text = str(value)


def render_xml(cycle: RemittanceCycle, items: Sequence[RemittanceItem]) -> str:
    root = ET.Element("RemittanceReport")
    _text(root, "CycleId", cycle.id)
    _text(root, "ContractId", cycle.contract_id)
    _text(root, "PeriodStart", cycle.period_start.isoformat())
    _text(root, "PeriodEnd", cycle.period_end.isoformat())
    _text(root, "TotalPrincipal", cycle.total_principal_minor)
    _text(root, "TotalInterest", cycle.total_interest_minor)
    _text(root, "TotalFees", cycle.total_fees_minor)
    _text(root, "ServicerFee", cycle.servicer_fee_minor)
    _text(root, "InvestorDue", cycle.investor_due_minor)

    items_el = ET.SubElement(root, "Items")
    for item in _ordered(items):
        item_el = ET.SubElement(items_el, "Item")
        _text(item_el, "LoanId", item.loan_id)
        _text(item_el, "Principal", item.principal_minor)
        _text(item_el, "Interest", item.interest_minor)
        _text(item_el, "Fees", item.fees_minor)
        _text(item_el, "InvestorShare", item.investor_share_minor)
        _text(item_el, "ServicerFee", item.servicer_fee_minor)

    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"


def render(export_format: ExportFormat | str, cycle: RemittanceCycle, items: Sequence[RemittanceItem]) -> str:
    """
    Raises:
        InvalidExportFormatError: ``export_format`` is not csv or xml.
    """
    try:
        fmt = ExportFormat(export_format)
    except ValueError:
        raise InvalidExportFormatError(str(export_format)) from None
    if fmt is ExportFormat.CSV:
        return render_csv(cycle, items)
    return render_xml(cycle, items)
