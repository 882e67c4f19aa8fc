from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_sheet_workbook(sheet_title, headers, rows, column_widths=None):
    """
    Build a single-sheet workbook:
    - bold, wrapped header row
    - one appended row per item of ``rows`` (already ordered like ``headers``)
    - explicit column widths when given, else at least 18 characters
    """
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(list(headers))
    for row in rows:
        sheet.append(list(row))

    for idx, header in enumerate(headers, start=1):
        cell = sheet.cell(row=1, column=idx)
        cell.font = Font(bold=True)
        cell.alignment = Alignment(wrap_text=True)
        column_letter = cell.column_letter
        if column_widths and idx <= len(column_widths):
            width = column_widths[idx - 1]
        else:
            width = max(18, len(header) + 2)
        sheet.column_dimensions[column_letter].width = width

    return workbook


def workbook_to_stream(workbook):
    output = BytesIO()
    workbook.save(output)
    output.seek(0)
    return output
