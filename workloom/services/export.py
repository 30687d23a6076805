"""
Profile export — CSV and Excel renderings of a mapping's profiles.
"""
import csv
import io
import logging
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from workloom.config import EXPORT_FORMATS
from workloom.errors import ValidationError

logger = logging.getLogger('services.export')

# column → header, in output order
EXPORT_COLUMNS = {
    'name': 'Name',
    'job_title': 'Job Title',
    'company': 'Company',
    'location': 'Location',
    'email': 'Email',
    'profile_url': 'Profile URL',
    'external_id': 'LinkedIn ID',
    'is_stale': 'Departed',
    'first_seen_at': 'First Seen',
    'last_seen_at': 'Last Seen',
}

CONTENT_TYPES = {
    'csv': 'text/csv',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}


def cell_value(profile, column) -> str:
    value = getattr(profile, column, None)
    if column == 'is_stale':
        return 'Yes' if value else 'No'
    if column in ('first_seen_at', 'last_seen_at'):
        return value.strftime('%Y-%m-%d %H:%M:%S') if value else ''
    return '' if value is None else str(value)


def generate_csv(profiles: List, columns=None) -> bytes:
    columns = columns or list(EXPORT_COLUMNS)
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL)
    writer.writerow([EXPORT_COLUMNS.get(c, c) for c in columns])
    for profile in profiles:
        writer.writerow([cell_value(profile, c) for c in columns])
    return output.getvalue().encode('utf-8')


def generate_excel(profiles: List, columns=None, title='Profiles') -> bytes:
    columns = columns or list(EXPORT_COLUMNS)
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]   # Excel sheet-name limit

    header_fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
    header_font = Font(bold=True, color='FFFFFF', size=11)
    for col, column in enumerate(columns, start=1):
        cell = ws.cell(row=1, column=col, value=EXPORT_COLUMNS.get(column, column))
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal='center', vertical='center')

    for row, profile in enumerate(profiles, start=2):
        for col, column in enumerate(columns, start=1):
            ws.cell(row=row, column=col, value=cell_value(profile, column))

    for col_cells in ws.columns:
        width = max(len(str(c.value or '')) for c in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(width + 2, 50)
    ws.freeze_panes = 'A2'

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export_profiles(profiles, fmt, title='Profiles'):
    """Returns (payload bytes, content type)."""
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'. Available: {EXPORT_FORMATS}")
    logger.info("Exporting %d profile(s) as %s", len(profiles), fmt)
    if fmt == 'csv':
        return generate_csv(profiles), CONTENT_TYPES['csv']
    return generate_excel(profiles, title=title), CONTENT_TYPES['xlsx']
