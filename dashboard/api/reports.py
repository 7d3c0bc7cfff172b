"""
Dashboard API – Shared export builders (CSV, Excel, PDF).
"""
import csv
import re
from datetime import datetime, timezone
from io import BytesIO, StringIO

from django.http import HttpResponse

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _safe_filename(name: str) -> str:
    """Sanitize a string for safe use in Content-Disposition headers."""
    return re.sub(r'[^\w\-.]', '_', name)


def _attachment(content, content_type, filename):
    response = HttpResponse(content, content_type=content_type)
    response['Content-Disposition'] = f'attachment; filename="{_safe_filename(filename)}"'
    return response


def _display(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    return value


def _format_ts(ts):
    """Integer Unix timestamp -> 'YYYY-MM-DD HH:MM' (UTC)."""
    if not ts:
        return ''
    return datetime.fromtimestamp(ts, timezone.utc).strftime('%Y-%m-%d %H:%M')


# ── CSV ─────────────────────────────────────────────────────────────────────

def csv_response(headers, rows, filename):
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_display(v) for v in row])
    return _attachment(output.getvalue(), 'text/csv', filename)


# ── Excel ───────────────────────────────────────────────────────────────────

def add_sheet(wb, title, headers, rows, heading=None):
    """Append a styled sheet: optional heading row, header row, then data."""
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    ws = wb.create_sheet(title=title[:31])

    header_fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
    header_font = Font(bold=True, color='FFFFFF', size=11)
    header_alignment = Alignment(horizontal='center', vertical='center')

    row_num = 1
    if heading:
        last_col = get_column_letter(max(len(headers), 1))
        ws.merge_cells(f'A1:{last_col}1')
        ws['A1'] = heading
        ws['A1'].font = Font(bold=True, size=14)
        ws['A1'].alignment = Alignment(horizontal='center')

        ws.merge_cells(f'A2:{last_col}2')
        ws['A2'] = f"Generated on: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        ws['A2'].alignment = Alignment(horizontal='center')
        row_num = 4

    for col_num, header in enumerate(headers, 1):
        cell = ws.cell(row=row_num, column=col_num)
        cell.value = header
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = header_alignment

    widths = [len(str(h)) for h in headers]
    for row in rows:
        row_num += 1
        for col_idx, value in enumerate(row, 1):
            value = _display(value)
            cell = ws.cell(row=row_num, column=col_idx)
            cell.value = value
            cell.alignment = Alignment(horizontal='left', vertical='top', wrap_text=True)
            if col_idx <= len(widths):
                widths[col_idx - 1] = max(widths[col_idx - 1], len(str(value)))

    for col_idx, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = min(width + 2, 50)
    return ws


def xlsx_response(sheets, filename):
    """
    ``sheets`` is a list of ``(title, headers, rows)`` or
    ``(title, headers, rows, heading)`` tuples, one worksheet each.
    """
    from openpyxl import Workbook

    wb = Workbook()
    wb.remove(wb.active)
    for sheet in sheets:
        add_sheet(wb, *sheet)

    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return _attachment(buf.getvalue(), XLSX_CONTENT_TYPE, filename)


# ── PDF ─────────────────────────────────────────────────────────────────────

def pdf_styles():
    from reportlab.lib.enums import TA_CENTER
    from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle

    styles = getSampleStyleSheet()
    return {
        'title': ParagraphStyle(
            'CustodyTitle', parent=styles['Heading1'],
            fontSize=14, alignment=TA_CENTER, spaceAfter=12,
        ),
        'heading': ParagraphStyle(
            'CustodyHeading', parent=styles['Heading2'], fontSize=12, spaceBefore=10, spaceAfter=6,
        ),
        'body': styles['BodyText'],
        'small': ParagraphStyle('CustodySmall', parent=styles['BodyText'], fontSize=8),
    }


def pdf_table(data, col_widths=None, header=True):
    """Grid table in the house style; the first row is a header when ``header``."""
    from reportlab.lib import colors
    from reportlab.platypus import Table, TableStyle

    table = Table(data, colWidths=col_widths, repeatRows=1 if header else 0)
    style_cmds = [
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 5),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
    ]
    if header:
        style_cmds += [
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#2C3E50')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ]
        for i in range(1, len(data)):
            if i % 2 == 0:
                style_cmds.append(('BACKGROUND', (0, i), (-1, i), colors.HexColor('#ECF0F1')))
    else:
        style_cmds.append(('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'))
    table.setStyle(TableStyle(style_cmds))
    return table


def pdf_response(elements, filename, landscape_mode=False):
    from reportlab.lib.pagesizes import A4, landscape
    from reportlab.lib.units import inch
    from reportlab.platypus import SimpleDocTemplate

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=landscape(A4) if landscape_mode else A4,
        leftMargin=0.5 * inch, rightMargin=0.5 * inch,
        topMargin=0.5 * inch, bottomMargin=0.5 * inch,
    )
    doc.build(elements)
    buffer.seek(0)
    return _attachment(buffer.getvalue(), 'application/pdf', filename)
