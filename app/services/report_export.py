# backend/app/services/report_export.py

"""
Per-lot report exports: the CSV history and the PDF statement.

Both take a lot's finished record list; neither touches the store.
"""

import html
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Sequence

from app.core.errors import ExportError
from app.models.reading import ReadingRecord, TrendKind
from app.services.ledger import consumption_trend, period_display, sort_records, to_liters

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Mes/Ano",
    "Leitura Anterior (m³)",
    "Leitura Atual (m³)",
    "Consumo (m³)",
    "Consumo (litros)",
    "Tarifa (R$/m³)",
    "Custo Total (R$)",
]


def csv_filename(lot_key: str) -> str:
    return f"historico_lote_{lot_key}.csv"


def pdf_filename(lot_key: str) -> str:
    return f"relatorio_lote_{lot_key}.pdf"


def _plain_number(value: float) -> str:
    # readings print as typed: 120 rather than 120.0
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _fixed(value: float, places: int = 2) -> Decimal:
    # ties round up: 2.125 -> 2.13
    return Decimal(repr(float(value))).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def _csv_row(record: ReadingRecord) -> List[str]:
    return [
        f'"{period_display(record.period)}"',
        _plain_number(record.previous_reading),
        _plain_number(record.current_reading),
        f"{_fixed(record.consumption)}",
        f"{_fixed(to_liters(record.consumption), 0)}",
        f"{_fixed(record.tariff)}",
        f"{_fixed(record.cost)}",
    ]


def build_csv(lot_key: str, records: Sequence[ReadingRecord]) -> str:
    """
    Title line, blank line, header row, then one ';'-separated row per record
    in the order given.
    """
    if not records:
        raise ExportError(f"No records to export for lot {lot_key}")

    lines = [f'"Relatório para o Lote: {lot_key}"', ""]
    lines.append(";".join(CSV_HEADERS))
    lines.extend(";".join(_csv_row(r)) for r in records)
    return "\n".join(lines)


# -------------------------------------------------------------------
# PDF
# -------------------------------------------------------------------

_STATEMENT_CSS = """
body { font-family: 'DejaVu Sans', sans-serif; font-size: 11pt; color: #1f2937; }
h1 { font-size: 16pt; text-align: center; margin-bottom: 2mm; }
h2 { font-size: 12pt; text-align: center; color: #4b5563; margin-top: 0; }
table { width: 100%; border-collapse: collapse; margin: 8mm 0; }
th, td { border: 1px solid #d1d5db; padding: 5px 7px; }
th { background: #f3f4f6; text-align: left; }
td.num { text-align: right; }
.trend { padding: 4mm; border-radius: 2mm; text-align: center; }
.trend.increase { background: #fee2e2; color: #991b1b; }
.trend.decrease { background: #dcfce7; color: #166534; }
.trend.first, .trend.stable { background: #f3f4f6; color: #1f2937; }
"""


def _liters(value: float) -> str:
    return f"{_fixed(to_liters(value), 0):,f}".replace(",", ".")


def trend_message(records: Sequence[ReadingRecord]) -> str:
    trend = consumption_trend(records)
    if trend is None:
        return ""
    if trend.kind == TrendKind.FIRST:
        return f"Primeiro registro: <strong>{_fixed(trend.consumption)} m³</strong> ({_liters(trend.consumption)} litros)."
    if trend.kind == TrendKind.INCREASE:
        return (
            f"Aumento de <strong>{_fixed(trend.difference)} m³</strong> "
            f"({_liters(abs(trend.difference))} litros) desde o mês anterior."
        )
    if trend.kind == TrendKind.DECREASE:
        return (
            f"Economia de <strong>{_fixed(abs(trend.difference))} m³</strong> "
            f"({_liters(abs(trend.difference))} litros) desde o mês anterior."
        )
    return f"Consumo estável em <strong>{_fixed(trend.consumption)} m³</strong>."


def render_statement_html(lot_key: str, records: Sequence[ReadingRecord]) -> str:
    ordered = sort_records(records)
    year = ordered[-1].period.split("-")[0] if ordered else ""
    trend = consumption_trend(ordered)
    lot = html.escape(str(lot_key))

    rows = "\n".join(
        "<tr>"
        f"<td>{period_display(r.period)}</td>"
        f"<td class=\"num\">{_plain_number(r.previous_reading)}</td>"
        f"<td class=\"num\">{_plain_number(r.current_reading)}</td>"
        f"<td class=\"num\">{_fixed(r.consumption)}</td>"
        f"<td class=\"num\">{_liters(r.consumption)}</td>"
        f"<td class=\"num\">{_fixed(r.tariff)}</td>"
        f"<td class=\"num\">{_fixed(r.cost)}</td>"
        "</tr>"
        for r in ordered
    )
    header = "".join(f"<th>{html.escape(h)}</th>" for h in CSV_HEADERS)
    trend_class = trend.kind.value if trend else "first"

    return f"""<!DOCTYPE html>
<html lang="pt-BR">
<head><meta charset="utf-8"><style>{_STATEMENT_CSS}</style></head>
<body>
  <h1>DEMONSTRATIVO DE CONSUMO D'ÁGUA - {year} - LOTE {lot}</h1>
  <h2>Comparativo de Consumo</h2>
  <table>
    <thead><tr>{header}</tr></thead>
    <tbody>
{rows}
    </tbody>
  </table>
  <div class="trend {trend_class}">{trend_message(ordered)}</div>
</body>
</html>
"""


def build_pdf(lot_key: str, records: Sequence[ReadingRecord]) -> bytes:
    if not records:
        raise ExportError(f"No records to export for lot {lot_key}")

    document = render_statement_html(lot_key, records)
    try:
        from weasyprint import HTML
    except Exception as exc:
        raise ExportError("PDF export unavailable: WeasyPrint could not be loaded", status_code=503) from exc

    try:
        return HTML(string=document).write_pdf()
    except Exception as exc:
        logger.exception(f"PDF generation failed for lot {lot_key}")
        raise ExportError(f"PDF generation failed: {exc}", status_code=503) from exc
