# adpulse/services/export_xlsx.py
from __future__ import annotations

import io
from typing import Iterable

import openpyxl
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter


def _auto_width(ws) -> None:
    widths = {}
    for row in ws.iter_rows():
        for cell in row:
            val = "" if cell.value is None else str(cell.value)
            widths[cell.column] = max(widths.get(cell.column, 0), len(val) + 1)
    for col, w in widths.items():
        ws.column_dimensions[get_column_letter(col)].width = min(w, 60)


def _title(ws, text: str, columns: int) -> None:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=columns)
    c = ws.cell(row=1, column=1, value=text)
    c.font = Font(bold=True, size=14)
    c.alignment = Alignment(horizontal="center")


SLA_HEADERS = ["#", "Проект", "Лид", "Телефон", "Источник", "Создан (UTC)", "Ожидает, мин", "Просрочен"]


def build_sla_xlsx(rows: Iterable, title: str, threshold_minutes: int) -> bytes:
    """
    rows: SlaRow. Лист «SLA» со всеми ожидающими лидами + лист «Сводка».
    """
    rows = list(rows)
    wb = openpyxl.Workbook()
    ws1 = wb.active
    ws1.title = "SLA"

    _title(ws1, title, len(SLA_HEADERS))
    ws1.append(SLA_HEADERS)
    for i in range(1, len(SLA_HEADERS) + 1):
        ws1.cell(row=2, column=i).font = Font(bold=True)

    for idx, r in enumerate(rows, 1):
        ws1.append([
            idx,
            r.project_name,
            r.lead_name,
            r.phone or "",
            r.source,
            r.created_at.strftime("%Y-%m-%d %H:%M"),
            r.age_minutes,
            "да" if r.overdue else "нет",
        ])
    _auto_width(ws1)

    ws2 = wb.create_sheet(title="Сводка")
    _title(ws2, f"Порог SLA: {threshold_minutes} мин", 3)
    ws2.append(["Проект", "Ожидают", "Просрочено"])
    for i in range(1, 4):
        ws2.cell(row=2, column=i).font = Font(bold=True)

    per_project: dict[str, list[int]] = {}
    for r in rows:
        agg = per_project.setdefault(r.project_name, [0, 0])
        agg[0] += 1
        agg[1] += 1 if r.overdue else 0
    for name, (waiting, overdue) in sorted(per_project.items()):
        ws2.append([name, waiting, overdue])
    _auto_width(ws2)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
