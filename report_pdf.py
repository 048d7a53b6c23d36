# report_pdf.py
from datetime import datetime
from io import BytesIO

import pytz
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, Table, TableStyle

from models import FUEL_TYPE_LABELS

HEADER_BG = colors.HexColor("#233b64")
GRID = colors.HexColor("#d8e2f0")
ROW_ALT = [colors.whitesmoke, colors.HexColor("#f7f9fc")]


def _fmt_money(v):
    try:
        return f"{float(v):,.2f}"
    except (TypeError, ValueError):
        return "-"


def _fmt_litres(v):
    try:
        return f"{float(v):,.3f}"
    except (TypeError, ValueError):
        return "-"


def _draw_paragraph(c, text, style, x, y, max_width):
    p = Paragraph(text, style)
    w, h = p.wrapOn(c, max_width, 1000)
    p.drawOn(c, x, y - h)
    return y - h


def _table_style(numeric_from_col: int) -> TableStyle:
    return TableStyle([
        ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
        ("ALIGN", (numeric_from_col, 1), (-1, -1), "RIGHT"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.25, GRID),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), ROW_ALT),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
        ("TOPPADDING", (0, 1), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 1), (-1, -1), 5),
    ])


def build_daily_report_pdf(*, station, sales, settlement=None, tz_name="Asia/Kolkata") -> bytes:
    """
    Daily station report (A4 landscape)

    Sections:
      - Summary (sale value, litres, payment split)
      - Sales by fuel type
      - Readings (one row per billable reading)
      - Cash settlement, if one was recorded for the day
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=landscape(A4))
    page_w, page_h = landscape(A4)

    x_margin = 12 * mm
    y_margin = 14 * mm
    max_width = page_w - 2 * x_margin
    y = page_h - y_margin

    styles = getSampleStyleSheet()
    title_style = styles["Heading2"]
    title_style.spaceAfter = 0
    subtitle_style = styles["Normal"]
    subtitle_style.leading = 14
    section_style = ParagraphStyle("Section", parent=styles["Heading3"], spaceBefore=10, spaceAfter=6)

    def ensure_space(h_needed):
        nonlocal y
        if y - h_needed < 18 * mm:
            c.showPage()
            y = page_h - y_margin

    def draw_table(data, col_widths, numeric_from_col):
        nonlocal y
        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(_table_style(numeric_from_col))
        tw, th = table.wrapOn(c, max_width, y - 10 * mm)
        ensure_space(th)
        table.drawOn(c, x_margin, y - th)
        y = y - th - 6 * mm

    def draw_section(text):
        nonlocal y
        ensure_space(14 * mm)
        y = _draw_paragraph(c, text, section_style, x_margin, y, max_width)
        y -= 2 * mm

    y = _draw_paragraph(c, f"{station['name']} - Daily Sales Report ({sales['date']})",
                        title_style, x_margin, y, max_width)
    generated = datetime.now(pytz.timezone(tz_name)).strftime("%Y-%m-%d %H:%M")
    y = _draw_paragraph(c, f"Generated: {generated} ({tz_name})", subtitle_style, x_margin, y, max_width)
    y -= 6 * mm

    split = sales["paymentSplit"]
    draw_section("Summary")
    draw_table(
        [
            ["Total Sale Value", "Litres", "Readings", "Cash", "Online", "Credit"],
            [
                _fmt_money(sales["totalSaleValue"]),
                _fmt_litres(sales["totalLitres"]),
                str(sales["readingsCount"]),
                _fmt_money(split["cash"]),
                _fmt_money(split["online"]),
                _fmt_money(split["credit"]),
            ],
        ],
        [46 * mm] * 6,
        0,
    )

    draw_section("Sales by fuel type")
    fuel_rows = [
        [FUEL_TYPE_LABELS.get(ft, ft), _fmt_litres(v["litres"]), _fmt_money(v["value"]), str(v["readings"])]
        for ft, v in sorted(sales["byFuelType"].items())
    ]
    draw_table(
        [["Fuel Type", "Litres", "Sale Value", "Readings"]] + (fuel_rows or [["-"] * 4]),
        [70 * mm, 50 * mm, 50 * mm, 40 * mm],
        1,
    )

    draw_section("Readings")
    reading_rows = [
        [
            str(r["nozzleNumber"]),
            FUEL_TYPE_LABELS.get(r["fuelType"], r["fuelType"]),
            r["employeeName"],
            _fmt_litres(r["litres"]),
            _fmt_money(r["pricePerLitre"]),
            _fmt_money(r["saleValue"]),
        ]
        for r in sales["readings"]
    ]
    draw_table(
        [["Nozzle", "Fuel Type", "Employee", "Litres", "Price / L", "Sale Value"]] + (reading_rows or [["-"] * 6]),
        [24 * mm, 44 * mm, 74 * mm, 40 * mm, 40 * mm, 50 * mm],
        3,
    )

    draw_section("Cash settlement")
    if settlement is None:
        ensure_space(10 * mm)
        y = _draw_paragraph(c, "No settlement recorded for this day.", subtitle_style, x_margin, y, max_width)
    else:
        draw_table(
            [
                ["Expected Cash", "Actual Cash", "Variance", "Online", "Credit", "Notes"],
                [
                    _fmt_money(settlement.expected_cash),
                    _fmt_money(settlement.actual_cash),
                    _fmt_money(settlement.variance),
                    _fmt_money(settlement.online),
                    _fmt_money(settlement.credit),
                    settlement.notes or "",
                ],
            ],
            [40 * mm, 40 * mm, 36 * mm, 36 * mm, 36 * mm, 84 * mm],
            0,
        )
        if settlement.employee_shortfalls:
            draw_table(
                [["Employee", "Readings", "Shortfall"]] + [
                    [s.employee_name or s.employee_id, str(s.reading_count), _fmt_money(s.shortfall_amount)]
                    for s in settlement.employee_shortfalls
                ],
                [110 * mm, 40 * mm, 50 * mm],
                1,
            )

    c.showPage()
    c.save()
    return buf.getvalue()
