"""
匯出服務
選定用戶班表的 CSV 匯出，以及單一班表的 PDF（reportlab）
"""
import csv
import html
import io
import logging
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.schedule import Schedule
from ..utils.shift_calendar import sort_by_weekday
from ..utils.timezone import format_local_time
from .schedule_service import describe_dates

logger = logging.getLogger(__name__)

CSV_HEADERS = ["Utilizador", "Email", "Mês", "Turnos", "Observações", "Edições"]
BRAND_RED = colors.HexColor("#dc3545")


def _schedules_for(db: Session, user_emails: List[str], month: Optional[str]) -> List[Schedule]:
    query = db.query(Schedule)
    if user_emails:
        query = query.filter(Schedule.user_email.in_(user_emails))
    if month:
        query = query.filter(Schedule.month == month)
    return query.order_by(Schedule.user_name, Schedule.month).all()


class ExportService:
    """班表匯出"""

    @classmethod
    def schedules_csv(cls, db: Session, user_emails: List[str], month: Optional[str] = None) -> str:
        schedules = _schedules_for(db, user_emails, month)
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_HEADERS)
        for s in schedules:
            writer.writerow([
                s.user_name,
                s.user_email,
                s.month,
                "; ".join(describe_dates(s.dates)),
                s.notes or "",
                s.edit_count,
            ])
        logger.info(f"匯出 {len(schedules)} 筆班表為 CSV")
        return output.getvalue()

    @classmethod
    def schedule_pdf(cls, schedule: Schedule) -> bytes:
        """產生單一用戶月份班表的 PDF"""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer, pagesize=A4,
            leftMargin=20 * mm, rightMargin=20 * mm, topMargin=20 * mm, bottomMargin=20 * mm,
            title=f"Escala {schedule.user_name} {schedule.month}",
        )
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle("EscalaTitle", parent=styles["Title"], textColor=BRAND_RED)
        section_style = ParagraphStyle("EscalaSection", parent=styles["Heading3"], textColor=BRAND_RED)
        body = styles["Normal"]

        story = [
            Paragraph(settings.APP_NAME, title_style),
            Paragraph(f"Disponibilidade para {schedule.month}", styles["Heading2"]),
            Spacer(1, 4 * mm),
        ]

        info = [
            ["Nome", schedule.user_name],
            ["Email", schedule.user_email],
            ["Submetido em", format_local_time(schedule.updated_at) or "-"],
            ["Edições", str(schedule.edit_count)],
        ]
        info_table = Table(info, colWidths=[40 * mm, 120 * mm])
        info_table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("TEXTCOLOR", (0, 0), (0, -1), BRAND_RED),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        story += [info_table, Spacer(1, 6 * mm)]

        dates = schedule.dates
        if isinstance(dates, dict):
            sections = [
                ("Turnos", [s.replace("_", " ") for s in sort_by_weekday(dates.get("shifts", []))],
                 dates.get("shiftNotes")),
                ("Pernoites", list(dates.get("overnights", [])), dates.get("overnightNotes")),
            ]
        else:
            sections = [("Turnos", describe_dates(dates), None)]

        has_items = False
        for heading, items, notes in sections:
            if not items:
                continue
            has_items = True
            story.append(Paragraph(heading, section_style))
            table = Table([[f"• {item}"] for item in items], colWidths=[160 * mm])
            table.setStyle(TableStyle([
                ("ROWBACKGROUNDS", (0, 0), (-1, -1), [colors.HexColor("#f8f9fa"), colors.white]),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
            ]))
            story.append(table)
            if notes:
                story.append(Paragraph(f"<b>Observações:</b> {html.escape(notes)}", body))
            story.append(Spacer(1, 4 * mm))

        if not has_items:
            story.append(Paragraph("Nenhum turno selecionado.", body))
        if schedule.notes:
            story += [Paragraph("Observações", section_style), Paragraph(html.escape(schedule.notes), body)]

        story += [Spacer(1, 6 * mm), Paragraph(f"Total de turnos: {sum(len(i) for _, i, _ in sections)}", body)]

        doc.build(story)
        return buffer.getvalue()
