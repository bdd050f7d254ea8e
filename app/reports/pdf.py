"""
Property report PDF.

Layout, top to bottom:
1. Header band (brand + report type) on the first page
2. Property title and address
3. Key metrics band: price, type, size, bed/bath
4. Executive Summary
5. Market Insights & Neighborhood Amenities
6. Detailed Analysis (full model output)
7. Recommendations (new page)
Every page carries a footer with the generation date and report id.
"""

from __future__ import annotations

import html
import re
from datetime import datetime
from io import BytesIO
from typing import Any, Mapping

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle


class Palette:
    BRAND = colors.HexColor("#667eea")
    BRAND_LIGHT = colors.HexColor("#eef0fd")
    CHARCOAL = colors.Color(0.2, 0.2, 0.22)
    SLATE = colors.Color(0.35, 0.38, 0.42)
    GRAY = colors.Color(0.5, 0.5, 0.5)
    WHITE = colors.white


PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 18 * mm
HEADER_HEIGHT = 28 * mm

_HEADING_RE = re.compile(r"^(?:#+\s*|\d+\.\s+|\*\*)?[A-Z][^\n]{0,80}(?::|\*\*)?$")


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            name="ReportTitle", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=18, leading=22, textColor=Palette.CHARCOAL, spaceAfter=4,
        ),
        "address": ParagraphStyle(
            name="ReportAddress", parent=base["Normal"], fontName="Helvetica",
            fontSize=10, leading=13, textColor=Palette.SLATE, spaceAfter=10,
        ),
        "section": ParagraphStyle(
            name="SectionTitle", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=13, leading=17, textColor=Palette.BRAND, spaceBefore=14, spaceAfter=8,
        ),
        "body": ParagraphStyle(
            name="Body", parent=base["Normal"], fontName="Helvetica",
            fontSize=10, leading=14, textColor=Palette.CHARCOAL, spaceAfter=6,
        ),
        "subheading": ParagraphStyle(
            name="Subheading", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=10.5, leading=14, textColor=Palette.CHARCOAL, spaceBefore=6, spaceAfter=4,
        ),
        "metric_label": ParagraphStyle(
            name="MetricLabel", parent=base["Normal"], fontName="Helvetica",
            fontSize=7.5, leading=9, textColor=Palette.SLATE, alignment=1,
        ),
        "metric_value": ParagraphStyle(
            name="MetricValue", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=11, leading=14, textColor=Palette.CHARCOAL, alignment=1,
        ),
    }


def _money(value: Any) -> str:
    try:
        return f"${float(value):,.0f}"
    except (TypeError, ValueError):
        return str(value)


def _plain(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return "" if value is None else str(value)


def _paragraphs(text: str, styles: dict[str, ParagraphStyle]) -> list:
    """Split free text on blank lines; heading-looking lines come out bold."""
    flowables = []
    for block in re.split(r"\n\s*\n", text.strip()):
        lines = [ln.strip() for ln in block.splitlines() if ln.strip()]
        if not lines:
            continue
        first = lines[0]
        if len(lines) > 1 and _HEADING_RE.match(first):
            flowables.append(Paragraph(_escape(first.strip("#* ")), styles["subheading"]))
            lines = lines[1:]
        elif len(lines) == 1 and _HEADING_RE.match(first) and len(first) < 60:
            flowables.append(Paragraph(_escape(first.strip("#* ")), styles["subheading"]))
            continue
        body = "<br/>".join(_escape(ln.replace("**", "")) for ln in lines)
        flowables.append(Paragraph(body, styles["body"]))
    return flowables


def _metrics_band(snapshot: Mapping[str, Any], styles: dict[str, ParagraphStyle]) -> Table:
    metrics = [
        ("PRICE", _money(snapshot.get("price"))),
        ("TYPE", str(snapshot.get("propertyType", "")).replace("_", " ")),
        ("SIZE", f"{_plain(snapshot.get('squareFeet'))} sq ft"),
        ("BED/BATH", f"{_plain(snapshot.get('bedrooms'))} / {_plain(snapshot.get('bathrooms'))}"),
    ]
    cells = [[Paragraph(label, styles["metric_label"]) for label, _ in metrics],
             [Paragraph(_escape(value), styles["metric_value"]) for _, value in metrics]]
    width = (PAGE_WIDTH - 2 * MARGIN) / len(metrics)
    table = Table(cells, colWidths=[width] * len(metrics))
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), Palette.BRAND_LIGHT),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ("LINEAFTER", (0, 0), (-2, -1), 0.5, Palette.WHITE),
    ]))
    return table


def render_report_pdf(
    *,
    report_id: str,
    snapshot: Mapping[str, Any],
    content: str,
    executive_summary: str | None,
    market_insights: str | None,
    recommendations: str | None,
    brand: str,
    generated_at: datetime,
) -> bytes:
    styles = _styles()
    report_type = str(snapshot.get("reportType") or "CUSTOM")
    header_text = f"{report_type.replace('_', ' ')} REPORT"
    footer_text = f"Generated on {generated_at.strftime('%B %d, %Y')} by {brand}"

    def draw_header(canvas_obj: canvas.Canvas, doc) -> None:
        canvas_obj.saveState()
        canvas_obj.setFillColor(Palette.BRAND)
        canvas_obj.rect(0, PAGE_HEIGHT - HEADER_HEIGHT, PAGE_WIDTH, HEADER_HEIGHT, stroke=0, fill=1)
        canvas_obj.setFillColor(Palette.WHITE)
        canvas_obj.setFont("Helvetica-Bold", 16)
        canvas_obj.drawString(MARGIN, PAGE_HEIGHT - 13 * mm, brand)
        canvas_obj.setFont("Helvetica", 10)
        canvas_obj.drawString(MARGIN, PAGE_HEIGHT - 20 * mm, header_text)
        canvas_obj.restoreState()
        draw_footer(canvas_obj, doc)

    def draw_footer(canvas_obj: canvas.Canvas, doc) -> None:
        canvas_obj.saveState()
        canvas_obj.setFont("Helvetica", 7)
        canvas_obj.setFillColor(Palette.GRAY)
        canvas_obj.drawString(MARGIN, 10 * mm, footer_text)
        canvas_obj.drawRightString(PAGE_WIDTH - MARGIN, 10 * mm, f"Report ID: {report_id}")
        canvas_obj.restoreState()

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=f"{snapshot.get('title', '')} - {header_text.title()}",
        author=brand,
    )

    address = ", ".join(
        _plain(snapshot.get(k)) for k in ("address", "city", "state") if snapshot.get(k)
    )
    if snapshot.get("zipCode"):
        address = f"{address} {snapshot['zipCode']}"

    story: list = [
        Spacer(1, HEADER_HEIGHT - MARGIN + 4 * mm),
        Paragraph(_escape(str(snapshot.get("title", ""))), styles["title"]),
        Paragraph(_escape(address), styles["address"]),
        _metrics_band(snapshot, styles),
        Spacer(1, 6 * mm),
    ]

    if executive_summary:
        story.append(Paragraph("Executive Summary", styles["section"]))
        story.extend(_paragraphs(executive_summary, styles))

    if market_insights:
        story.append(Paragraph("Market Insights &amp; Neighborhood Amenities", styles["section"]))
        story.extend(_paragraphs(market_insights, styles))

    story.append(Paragraph("Detailed Analysis", styles["section"]))
    story.extend(_paragraphs(content or "No content generated", styles))

    if recommendations:
        story.append(PageBreak())
        story.append(Paragraph("Recommendations", styles["section"]))
        story.extend(_paragraphs(recommendations, styles))

    doc.build(story, onFirstPage=draw_header, onLaterPages=draw_footer)
    return buffer.getvalue()
