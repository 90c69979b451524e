"""
Export Service — entry flattening plus printable HTML and Excel output.

flatten_entry() turns a template + entry into a display document:

    {"title", "folio", "status_label", ..., "sections": [
        {"title": "General", "fields": [{"id", "label", "value"} | {..., "table"}]}
    ]}

Values are resolved by field type (option labels, Sí/No, d/m/yyyy dates,
comma-joined lists, table rows).  A malformed value never aborts an export:
it is rendered as "" and logged.

The HTML output is self-contained (inline CSS) and print-ready, so the
browser's print dialog produces the PDF.  Excel output is built with
openpyxl and returned as an in-memory buffer.
"""

import io
import logging
from datetime import datetime, timezone

from markupsafe import escape
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from formcapture.core.exceptions import NotFoundError, ValidationError
from formcapture.models import db
from formcapture.models.audit import write_activity
from formcapture.models.form import (
    DEFAULT_SECTION,
    OPTION_FIELD_TYPES,
    STAGE_LABELS,
    STATUS_LABELS,
    TABLE_FIELD_TYPES,
    field_label,
    format_folio,
    normalize_status,
    table_columns,
)
from formcapture.services import entry_service, template_service, user_service
from formcapture.utils.helpers import parse_date

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
SECTION_FONT = Font(size=12, bold=True, color="1F4E79")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

CHECKBOX_TRUE = "Sí"
CHECKBOX_FALSE = "No"


# ═════════════════════════════════════════════════════════════════════════════
# Value formatting
# ═════════════════════════════════════════════════════════════════════════════


def format_date(value) -> str:
    """Render a date as ``d/m/yyyy`` (es-MX short form, no zero padding)."""
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"Unparseable date: {value!r}")
    return f"{parsed.day}/{parsed.month}/{parsed.year}"


def _option_label(options, value) -> str:
    for option in options or []:
        if isinstance(option, dict):
            if option.get("value") == value or str(option.get("value")) == str(value):
                return str(option.get("label", value))
        elif option == value:
            return str(option)
    return str(value)


def _scalar(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return CHECKBOX_TRUE if value else CHECKBOX_FALSE
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(_scalar(v) for v in value if v is not None)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {_scalar(v)}" for k, v in value.items())
    return str(value)


def _format_value(field: dict, value) -> str:
    field_type = field.get("type")
    if value is None:
        return ""
    if field_type in OPTION_FIELD_TYPES:
        if isinstance(value, list):
            return ", ".join(_option_label(field.get("options"), v) for v in value)
        return _option_label(field.get("options"), value)
    if field_type == "checkbox":
        if isinstance(value, list):
            return ", ".join(_option_label(field.get("options"), v) for v in value)
        if isinstance(value, bool):
            return CHECKBOX_TRUE if value else CHECKBOX_FALSE
        raise TypeError(f"Unexpected checkbox value: {value!r}")
    if field_type == "date":
        if value == "":
            return ""
        return format_date(value)
    if isinstance(value, (dict,)) and field_type not in TABLE_FIELD_TYPES:
        raise TypeError(f"Unexpected object for {field_type} field")
    return _scalar(value)


def format_field_value(field: dict, value) -> str:
    """Display string for a non-table field value; "" for malformed input."""
    try:
        return _format_value(field, value)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning(
            "Unformattable field value rendered empty",
            extra={"field_id": field.get("id"), "field_type": field.get("type"), "error": str(exc)},
        )
        return ""


def format_table(field: dict, value) -> dict:
    """Flatten a table value into ``{"columns": [headers], "rows": [[...]]}``."""
    columns = table_columns(field)
    result = {"columns": [c["header"] for c in columns], "rows": []}
    if value in (None, ""):
        return result
    if not isinstance(value, list):
        logger.warning(
            "Table value is not a list; rendered empty",
            extra={"field_id": field.get("id")},
        )
        return result

    if not columns:
        keys = []
        for row in value:
            if isinstance(row, dict):
                keys.extend(k for k in row if k not in keys)
        columns = [{"id": k, "header": k} for k in keys]
        result["columns"] = keys

    for row in value:
        if not isinstance(row, dict):
            logger.warning(
                "Table row is not an object; skipped",
                extra={"field_id": field.get("id")},
            )
            continue
        cells = []
        for column in columns:
            cell = row.get(column["id"])
            if column.get("type") in OPTION_FIELD_TYPES | {"checkbox", "date"}:
                cells.append(format_field_value(column, cell))
            else:
                cells.append(_scalar(cell))
        result["rows"].append(cells)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Flattening
# ═════════════════════════════════════════════════════════════════════════════


def flatten_entry(template, entry, *, user_names: dict | None = None) -> dict:
    """
    Flatten one entry into its display document.

    Fields are grouped by ``section`` (default "General") in template order.
    Entries whose template declares no fields are flattened from the raw
    data keys.
    """
    user_names = user_names or {}
    data = entry.data or {}
    sections: dict[str, list] = {}

    fields = [f for f in template.fields if f.get("id")]
    if fields:
        for field in fields:
            value = data.get(field["id"])
            item = {"id": field["id"], "label": field_label(field), "type": field.get("type")}
            if field.get("type") in TABLE_FIELD_TYPES:
                item["value"] = ""
                item["table"] = format_table(field, value)
            elif field.get("type") == "folio" and isinstance(value, int) and not isinstance(value, bool):
                item["value"] = format_folio(template.name, value)
            else:
                item["value"] = format_field_value(field, value)
            sections.setdefault(field.get("section") or DEFAULT_SECTION, []).append(item)
    else:
        for key, value in data.items():
            sections.setdefault(DEFAULT_SECTION, []).append(
                {"id": key, "label": key, "type": None, "value": _scalar(value)}
            )

    status = normalize_status(entry.status)
    return {
        "entry_id": entry.id,
        "template_id": template.id,
        "template_name": template.name,
        "title": (template.structure or {}).get("title") or template.name,
        "folio": format_folio(template.name, entry.folio_number)
        if entry.folio_number is not None else "",
        "lot_number": entry.lot_number or "",
        "department": entry.department or "",
        "status": status,
        "status_label": STATUS_LABELS.get(status, status),
        "workflow_stage_label": STAGE_LABELS.get(entry.workflow_stage, entry.workflow_stage or ""),
        "created_at": format_date(entry.created_at) if entry.created_at else "",
        "created_by": user_names.get(entry.created_by, ""),
        "signature": entry.signature or "",
        "signed_by": user_names.get(entry.signed_by, "") if entry.signed_by else "",
        "signed_at": format_date(entry.signed_at) if entry.signed_at else "",
        "sections": [{"title": title, "fields": items} for title, items in sections.items()],
    }


# ═════════════════════════════════════════════════════════════════════════════
# HTML (print → PDF)
# ═════════════════════════════════════════════════════════════════════════════

_HTML_STYLE = """
    body { font-family: 'Segoe UI', Arial, sans-serif; margin: 32px; color: #222; font-size: 12px; }
    h1 { color: #1F4E79; font-size: 20px; margin-bottom: 4px; }
    .company { color: #555; font-size: 13px; margin-bottom: 16px; }
    .meta { display: grid; grid-template-columns: 1fr 1fr; gap: 4px 24px; margin-bottom: 16px; }
    .section { margin: 16px 0; page-break-inside: avoid; }
    .section-title { background: #1F4E79; color: #fff; padding: 6px 10px; font-size: 13px; margin: 0 0 6px; }
    table { border-collapse: collapse; width: 100%; margin: 6px 0; }
    th { background: #e8eef5; text-align: left; padding: 5px 8px; border: 1px solid #c9d3df; }
    td { padding: 5px 8px; border: 1px solid #ddd; vertical-align: top; }
    td.label { width: 35%; font-weight: 600; background: #fafafa; }
    .signature { margin-top: 32px; text-align: center; }
    .signature img { max-width: 240px; max-height: 110px; }
    .entry-break { page-break-after: always; }
    @media print { body { margin: 12px; } }
"""


def _section_html(section: dict) -> str:
    rows = ""
    tables = ""
    for item in section["fields"]:
        if "table" in item:
            head = "".join(f"<th>{escape(h)}</th>" for h in item["table"]["columns"])
            body = "".join(
                "<tr>" + "".join(f"<td>{escape(c)}</td>" for c in row) + "</tr>"
                for row in item["table"]["rows"]
            )
            tables += (
                f"<p><strong>{escape(item['label'])}</strong></p>"
                f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"
            )
        else:
            rows += (
                f"<tr><td class=\"label\">{escape(item['label'])}</td>"
                f"<td>{escape(item['value'])}</td></tr>"
            )
    fields_table = f"<table><tbody>{rows}</tbody></table>" if rows else ""
    return (
        f"<div class=\"section\"><h3 class=\"section-title\">{escape(section['title'])}</h3>"
        f"{fields_table}{tables}</div>"
    )


def _entry_body_html(flat: dict) -> str:
    sections = "".join(_section_html(s) for s in flat["sections"])
    signature = ""
    if flat["signature"]:
        signed = escape(flat["signed_by"])
        if flat["signed_at"]:
            signed = f"{signed} · {escape(flat['signed_at'])}"
        signature = (
            f"<div class=\"signature\"><img src=\"{escape(flat['signature'])}\" alt=\"Firma\">"
            f"<p>{signed}</p></div>"
        )
    return f"""
<h1>{escape(flat['title'])}</h1>
<div class="meta">
  <div><strong>Folio:</strong> {escape(flat['folio'] or 'N/A')}</div>
  <div><strong>Estado:</strong> {escape(flat['status_label'])}</div>
  <div><strong>Lote:</strong> {escape(flat['lot_number'] or 'N/A')}</div>
  <div><strong>Departamento:</strong> {escape(flat['department'] or 'N/A')}</div>
  <div><strong>Fecha:</strong> {escape(flat['created_at'])}</div>
  <div><strong>Creado por:</strong> {escape(flat['created_by'])}</div>
</div>
{sections}
{signature}"""


def _html_document(title: str, body: str, company_name: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="es"><head>
<meta charset="utf-8">
<title>{escape(title)}</title>
<style>{_HTML_STYLE}</style>
</head><body>
<div class="company">{escape(company_name)}</div>
{body}
</body></html>"""


def generate_entry_html(flat: dict, company_name: str = "") -> str:
    """Printable HTML for a single flattened entry."""
    return _html_document(flat["title"], _entry_body_html(flat), company_name)


def generate_consolidated_html(template, flats: list[dict], company_name: str = "") -> str:
    """One printable document holding several entries, one per page."""
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    header = (
        f"<h1>DATOS HOMOLOGADOS: {escape(template.name)}</h1>"
        f"<p>Generado {generated} · Total de formularios: {len(flats)}</p>"
    )
    parts = []
    for index, flat in enumerate(flats):
        css = " class=\"entry-break\"" if index < len(flats) - 1 else ""
        parts.append(f"<div{css}>{_entry_body_html(flat)}</div>")
    return _html_document(template.name, header + "".join(parts), company_name)


# ═════════════════════════════════════════════════════════════════════════════
# Excel
# ═════════════════════════════════════════════════════════════════════════════


def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Size columns to content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _sheet_title(text: str) -> str:
    cleaned = "".join(ch for ch in text if ch not in '[]:*?/\\')
    return (cleaned or "Hoja")[:31]


def generate_entry_excel(flat: dict) -> io.BytesIO:
    """
    Excel workbook for one entry: a label/value sheet per entry plus one
    sheet per table field.  Returns a BytesIO buffer ready for send_file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Formulario"

    ws.merge_cells("A1:B1")
    ws["A1"] = flat["title"]
    ws["A1"].font = Font(size=16, bold=True)
    meta = [
        ("Folio", flat["folio"] or "N/A"),
        ("Estado", flat["status_label"]),
        ("Lote", flat["lot_number"] or "N/A"),
        ("Departamento", flat["department"] or "N/A"),
        ("Fecha", flat["created_at"]),
        ("Creado por", flat["created_by"]),
    ]
    row = 3
    for label, value in meta:
        ws.cell(row=row, column=1, value=label).font = Font(bold=True)
        ws.cell(row=row, column=2, value=value)
        row += 1

    table_fields = []
    for section in flat["sections"]:
        row += 1
        ws.cell(row=row, column=1, value=section["title"]).font = SECTION_FONT
        row += 1
        ws.cell(row=row, column=1, value="Campo")
        ws.cell(row=row, column=2, value="Valor")
        _apply_header_style(ws, row, 2)
        row += 1
        for item in section["fields"]:
            if "table" in item:
                table_fields.append(item)
                continue
            ws.cell(row=row, column=1, value=item["label"]).border = THIN_BORDER
            ws.cell(row=row, column=2, value=item["value"]).border = THIN_BORDER
            row += 1
    _auto_width(ws)

    used_titles = {ws.title}
    for item in table_fields:
        title = _sheet_title(item["label"])
        suffix = 2
        while title in used_titles:
            title = _sheet_title(f"{item['label'][:27]} {suffix}")
            suffix += 1
        used_titles.add(title)
        tws = wb.create_sheet(title)
        columns = item["table"]["columns"]
        for col, header in enumerate(columns, 1):
            tws.cell(row=1, column=col, value=header)
        _apply_header_style(tws, 1, len(columns))
        for r, cells in enumerate(item["table"]["rows"], 2):
            for col, value in enumerate(cells, 1):
                tws.cell(row=r, column=col, value=value).border = THIN_BORDER
        _auto_width(tws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


def generate_consolidated_excel(template, flats: list[dict]) -> io.BytesIO:
    """
    Consolidated workbook for several entries of one template.

    Sheets:
        Resumen            — one row per entry (folio, date, department, ...)
        Datos Detallados   — one row per entry, one column per non-table field
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Resumen"

    ws["A1"] = "DATOS HOMOLOGADOS"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = "Formulario"
    ws["B2"] = template.name
    ws["A3"] = "Total de formularios"
    ws["B3"] = len(flats)
    ws["A4"] = "Fecha de generación"
    ws["B4"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    base_headers = ["#", "Folio", "Fecha", "Departamento", "Creado por", "Estado", "Lote"]
    for col, header in enumerate(base_headers, 1):
        ws.cell(row=6, column=col, value=header)
    _apply_header_style(ws, 6, len(base_headers))

    def _base_row(index, flat):
        return [
            index,
            flat["folio"] or "N/A",
            flat["created_at"] or "N/A",
            flat["department"] or "N/A",
            flat["created_by"],
            flat["status_label"],
            flat["lot_number"],
        ]

    for index, flat in enumerate(flats, 1):
        for col, value in enumerate(_base_row(index, flat), 1):
            ws.cell(row=6 + index, column=col, value=value).border = THIN_BORDER
    _auto_width(ws)

    # Detail columns follow the first entry's field order; later entries
    # only add ids not already seen.
    columns: list[tuple[str, str]] = []
    seen = set()
    for flat in flats:
        for section in flat["sections"]:
            for item in section["fields"]:
                if "table" in item or item["id"] in seen:
                    continue
                seen.add(item["id"])
                columns.append((item["id"], item["label"]))

    detail = wb.create_sheet("Datos Detallados")
    headers = base_headers + [label for _, label in columns]
    for col, header in enumerate(headers, 1):
        detail.cell(row=1, column=col, value=header)
    _apply_header_style(detail, 1, len(headers))

    for index, flat in enumerate(flats, 1):
        values = {
            item["id"]: item["value"]
            for section in flat["sections"]
            for item in section["fields"]
            if "table" not in item
        }
        row = _base_row(index, flat) + [values.get(fid, "") for fid, _ in columns]
        for col, value in enumerate(row, 1):
            detail.cell(row=index + 1, column=col, value=value)
    _auto_width(detail)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


# ═════════════════════════════════════════════════════════════════════════════
# Export operations (lookup + activity log)
# ═════════════════════════════════════════════════════════════════════════════

EXPORT_FORMATS = ("html", "excel")
# "pdf" is served as the print-ready HTML document
FORMAT_ALIASES = {"pdf": "html", "xlsx": "excel"}

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HTML_MIMETYPE = "text/html; charset=utf-8"


def normalize_format(fmt: str | None) -> str:
    value = (fmt or "html").strip().lower()
    value = FORMAT_ALIASES.get(value, value)
    if value not in EXPORT_FORMATS:
        raise ValidationError(
            "Unsupported format. Supported values: html, pdf, excel.",
            details={"format": fmt},
        )
    return value


def _file_stem(text: str) -> str:
    stem = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in text or "")
    return stem.strip("_")[:80] or "formulario"


def export_entry(entry_id: int, fmt: str, user, company_name: str = "") -> tuple:
    """
    Render one visible entry.

    Returns:
        (content, mimetype, filename)
    """
    fmt = normalize_format(fmt)
    entry = entry_service.get_entry(entry_id, user)
    template = entry.template
    names = user_service.user_names([entry.created_by, entry.signed_by])
    flat = flatten_entry(template, entry, user_names=names)

    stem = _file_stem(f"{template.name}_{flat['folio'] or entry.id}")
    if fmt == "excel":
        content = generate_entry_excel(flat).getvalue()
        result = (content, XLSX_MIMETYPE, f"{stem}.xlsx")
    else:
        result = (generate_entry_html(flat, company_name), HTML_MIMETYPE, f"{stem}.html")

    write_activity(
        user_id=user.id, action="exported", resource_type="form_entry",
        resource_id=entry.id, details={"format": fmt},
    )
    db.session.commit()
    logger.info("Entry exported", extra={"entry_id": entry.id, "format": fmt, "actor_id": user.id})
    return result


def export_consolidated(template_id: int, entry_ids, fmt: str, user, company_name: str = "") -> tuple:
    """
    Render several entries of one template into a single document.

    Entries the user may not see, or that belong to another template, are
    skipped; NotFoundError when none remain.
    """
    fmt = normalize_format(fmt)
    template = template_service.get_template(template_id)
    entries = entry_service.visible_entries(user, entry_ids, template_id=template.id)
    if not entries:
        raise NotFoundError(resource="FormEntry", resource_id=",".join(str(i) for i in entry_ids))

    user_ids = [e.created_by for e in entries] + [e.signed_by for e in entries]
    names = user_service.user_names(user_ids)
    flats = [flatten_entry(template, e, user_names=names) for e in entries]

    stem = _file_stem(f"formularios_homologados_{template.name}")
    if fmt == "excel":
        content = generate_consolidated_excel(template, flats).getvalue()
        result = (content, XLSX_MIMETYPE, f"{stem}.xlsx")
    else:
        result = (
            generate_consolidated_html(template, flats, company_name),
            HTML_MIMETYPE,
            f"{stem}.html",
        )

    write_activity(
        user_id=user.id, action="exported_consolidated", resource_type="form_entries",
        resource_id=template.id,
        details={"format": fmt, "count": len(entries), "entry_ids": [e.id for e in entries]},
    )
    db.session.commit()
    logger.info(
        "Consolidated export",
        extra={"template_id": template.id, "format": fmt, "actor_id": user.id},
    )
    return result
