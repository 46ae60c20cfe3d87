"""
班表對照服務
讀取已發佈的 XLSX 班表，依已接受的換班請求替換儲存格中的機械編號或姓名，
產生「實際」班表網格。每次請求完整重新計算。
"""
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import requests
from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.user import User
from .exchange_service import ShiftExchangeService
from .settings_service import SystemSettingsService, SCHEDULE_XLSX_LINK

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})")
YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")
MONTHS = {
    "janeiro": 1, "fevereiro": 2, "março": 3, "marco": 3, "abril": 4, "maio": 5,
    "junho": 6, "julho": 7, "agosto": 8, "setembro": 9, "outubro": 10,
    "novembro": 11, "dezembro": 12,
}
HEADER_SCAN_ROWS = 21

# Excel 索引色
INDEXED_COLORS = {
    22: "rgb(192,192,192)",
    23: "rgb(128,128,128)",
    55: "rgb(153,153,153)",
}
NO_FILL_INDEXES = (9, 64)

GOOGLE_DRIVE_FILE = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
GOOGLE_SHEETS_FILE = re.compile(r"docs\.google\.com/spreadsheets/d/([a-zA-Z0-9_-]+)")


class ScheduleSourceError(Exception):
    """無法取得或解析已發佈的班表檔案"""


@dataclass
class Cell:
    value: Optional[str] = None
    bg_color: Optional[str] = None
    font_color: Optional[str] = None
    font_bold: bool = False
    is_merged_slave: bool = False
    merge_row_span: Optional[int] = None
    merge_col_span: Optional[int] = None
    is_modified: bool = False


@dataclass
class ReconciledGrid:
    rows: List[List[Cell]] = field(default_factory=list)
    row_dates: List[Optional[date]] = field(default_factory=list)
    header_month: Optional[int] = None
    header_year: Optional[int] = None

    @property
    def modified_cells(self) -> int:
        return sum(1 for row in self.rows for cell in row if cell.is_modified)


@dataclass
class _Merge:
    min_row: int
    max_row: int
    min_col: int
    max_col: int

    def contains(self, r: int, c: int) -> bool:
        return self.min_row <= r <= self.max_row and self.min_col <= c <= self.max_col


# ---------- 下載 ----------

def to_direct_download_url(url: str) -> str:
    """將 Google Drive／Google Sheets 分享連結轉為直接下載連結"""
    if "drive.google.com" in url:
        match = GOOGLE_DRIVE_FILE.search(url)
        if match:
            return f"https://drive.google.com/uc?export=download&id={match.group(1)}"
    match = GOOGLE_SHEETS_FILE.search(url)
    if match:
        return f"https://docs.google.com/spreadsheets/d/{match.group(1)}/export?format=xlsx"
    return url


def fetch_remote_file(url: str) -> bytes:
    download_url = to_direct_download_url(url)
    logger.info(f"下載班表檔案: {download_url}")
    try:
        response = requests.get(download_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"下載班表檔案失敗: {str(e)}")
        raise ScheduleSourceError(f"Erro ao carregar ficheiro: {str(e)}") from e
    return response.content


# ---------- 樣式 ----------

def hex_to_rgb(value: Optional[str]) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    clean = value.lstrip("#").upper()
    if len(clean) == 8:
        clean = clean[2:]
    if len(clean) != 6:
        return None
    try:
        r, g, b = (int(clean[i:i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        return None
    return f"rgb({r},{g},{b})"


def _rgb_of(color) -> Optional[str]:
    if color is None or getattr(color, "type", None) != "rgb":
        return None
    return hex_to_rgb(color.rgb)


def cell_bg_color(cell) -> Optional[str]:
    """返回儲存格背景色（CSS rgb），無填色時返回 None"""
    fill = getattr(cell, "fill", None)
    if fill is None or getattr(fill, "fill_type", None) in (None, "none"):
        return None

    fg = _rgb_of(fill.fgColor)
    if fg:
        return fg
    bg = _rgb_of(fill.bgColor)
    if bg:
        return bg

    for color in (fill.fgColor, fill.bgColor):
        if color is not None and color.type == "indexed":
            if color.indexed in NO_FILL_INDEXES:
                return None
            if color.indexed in INDEXED_COLORS:
                return INDEXED_COLORS[color.indexed]

    fg_color = fill.fgColor
    if fg_color is not None and fg_color.type == "theme":
        tint = fg_color.tint or 0
        # 主題 0 為白色、主題 1 為黑色
        if fg_color.theme == 0 and tint < 0:
            gray = round(255 * (1 + tint))
            return f"rgb({gray},{gray},{gray})"
        if fg_color.theme == 1 and tint > 0:
            gray = round(255 * tint)
            return f"rgb({gray},{gray},{gray})"
    return None


def cell_font_color(cell) -> Optional[str]:
    font = getattr(cell, "font", None)
    if font is None:
        return None
    return _rgb_of(font.color)


def cell_bold(cell) -> bool:
    font = getattr(cell, "font", None)
    return bool(font is not None and font.b)


# ---------- 日期 ----------

def normalize_date_str(date_str: str) -> str:
    """轉為 dd/mm/yyyy，兩位數年份 00-50 視為 20xx"""
    parts = re.split(r"[/-]", date_str)
    if len(parts) != 3:
        return date_str
    day, month, year = parts
    if len(year) == 2:
        year = f"20{year}" if int(year) <= 50 else f"19{year}"
    return f"{day.zfill(2)}/{month.zfill(2)}/{year}"


def _to_date(date_str: str) -> Optional[date]:
    try:
        return datetime.strptime(date_str, "%d/%m/%Y").date()
    except ValueError:
        return None


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _serial_to_date(value: float) -> Optional[date]:
    try:
        converted = from_excel(value)
    except (ValueError, OverflowError):
        return None
    if isinstance(converted, datetime):
        return converted.date()
    return converted if isinstance(converted, date) else None


def detect_header_month_year(rows: Sequence[Sequence]) -> Tuple[Optional[int], Optional[int]]:
    """在前 21 列中尋找月份名稱與年份"""
    month = None
    year = None
    for row in rows[:HEADER_SCAN_ROWS]:
        for cell in row:
            value = cell.value
            if isinstance(value, str):
                text = value.lower()
                for name, number in MONTHS.items():
                    if name in text and month is None:
                        month = number
                match = YEAR_PATTERN.search(text)
                if match and year is None:
                    year = int(match.group(1))
            elif isinstance(value, (datetime, date)):
                month = month or value.month
                year = year or value.year
            elif _is_number(value):
                if 2020 <= value <= 2035 and year is None:
                    year = int(value)
                if 40000 < value < 60000:
                    serial = _serial_to_date(value)
                    if serial:
                        month = month or serial.month
                        year = year or serial.year
    return month, year


def parse_date_value(value, header_month: Optional[int], header_year: Optional[int]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        match = DATE_PATTERN.search(value)
        if match:
            return _to_date(normalize_date_str(match.group(1)))
        return None
    if _is_number(value):
        if 40000 < value < 60000:
            return _serial_to_date(value)
        if 1 <= value <= 31 and float(value).is_integer() and header_month and header_year:
            try:
                return date(header_year, header_month, int(value))
            except ValueError:
                return None
    return None


def display_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------- 對照 ----------

def _substitute(cell_text: str, row_date: date, exchanges: Iterable,
                users_by_email: Dict[str, User], users_by_mech: Dict[str, User]) -> Tuple[str, bool]:
    """依已接受的換班請求替換儲存格內容；後面的請求覆蓋前面的結果"""
    result = cell_text
    modified = False

    owner = users_by_mech.get(cell_text)
    if owner is not None:
        for ex in exchanges:
            if row_date == ex.requested_date and owner.email == ex.requester_email:
                target = users_by_email.get(ex.target_email)
                if target is not None:
                    result, modified = target.mechanographic_number, True
            if ex.offered_date and row_date == ex.offered_date and owner.email == ex.target_email:
                requester = users_by_email.get(ex.requester_email)
                if requester is not None:
                    result, modified = requester.mechanographic_number, True

    lowered = cell_text.lower()
    named = next((u for u in users_by_email.values() if (u.name or "").lower() == lowered), None)
    if named is not None:
        for ex in exchanges:
            if row_date == ex.requested_date and named.email == ex.requester_email:
                result, modified = ex.target_name, True
            if ex.offered_date and row_date == ex.offered_date and named.email == ex.target_email:
                result, modified = ex.requester_name, True

    return result, modified


def reconcile_workbook(content: bytes, exchanges: Sequence, users: Sequence[User],
                       hidden_columns: Optional[Iterable[int]] = None) -> ReconciledGrid:
    """解析 XLSX 第一個工作表並套用已接受的換班"""
    hidden: Set[int] = set(settings.RECONCILIATION_HIDDEN_COLUMNS if hidden_columns is None else hidden_columns)
    try:
        workbook = load_workbook(io.BytesIO(content), data_only=True)
    except Exception as e:
        logger.error(f"解析 XLSX 失敗: {str(e)}")
        raise ScheduleSourceError("Ficheiro XLSX inválido") from e

    sheet = workbook.worksheets[0]
    first_row, last_row = sheet.min_row, sheet.max_row
    first_col, last_col = sheet.min_column, sheet.max_column
    rows = [list(r) for r in sheet.iter_rows(min_row=first_row, max_row=last_row,
                                             min_col=first_col, max_col=last_col)]
    if not rows:
        return ReconciledGrid()

    # 以 0 為起點、相對於工作表範圍的座標
    merges = [
        _Merge(m.min_row - first_row, m.max_row - first_row, m.min_col - first_col, m.max_col - first_col)
        for m in sheet.merged_cells.ranges
    ]
    n_rows = len(rows)
    n_cols = len(rows[0])

    def cell_at(r: int, c: int):
        return rows[r][c]

    header_month, header_year = detect_header_month_year(rows)

    # 第一欄的日期：合併儲存格先傳遞，其餘逐列解析
    date_by_row: Dict[int, date] = {}
    for m in merges:
        if m.min_col == 0 and m.max_col == 0:
            parsed = parse_date_value(cell_at(m.min_row, 0).value, header_month, header_year)
            if parsed:
                for r in range(m.min_row, m.max_row + 1):
                    date_by_row[r] = parsed
    for r in range(n_rows):
        if r in date_by_row:
            continue
        parsed = parse_date_value(cell_at(r, 0).value, header_month, header_year)
        if parsed:
            date_by_row[r] = parsed

    # 從第一個日期列的上一列（表頭）開始顯示
    first_date_row = next((r for r in range(n_rows) if r in date_by_row), 0)
    start_row = first_date_row - 1 if first_date_row > 0 else first_date_row

    visible_merges: Dict[Tuple[int, int], Tuple[bool, int, int]] = {}
    for m in merges:
        effective_start = max(m.min_row, start_row)
        row_span = m.max_row - effective_start + 1
        if row_span <= 0:
            continue
        col_span = m.max_col - m.min_col + 1
        for r in range(effective_start, m.max_row + 1):
            for c in range(m.min_col, m.max_col + 1):
                if r == effective_start and c == m.min_col:
                    visible_merges[(r, c)] = (True, row_span, col_span)
                else:
                    visible_merges[(r, c)] = (False, 0, 0)

    users_by_email = {u.email: u for u in users}
    users_by_mech = {u.mechanographic_number: u for u in users if u.mechanographic_number}

    grid = ReconciledGrid(header_month=header_month, header_year=header_year)
    for r in range(start_row, n_rows):
        row_cells: List[Cell] = []
        for c in range(n_cols):
            if c in hidden:
                continue
            merge_info = visible_merges.get((r, c))
            if merge_info and not merge_info[0]:
                row_cells.append(Cell(is_merged_slave=True))
                continue

            cell = cell_at(r, c)
            if merge_info and cell.value is None:
                # 表頭以上被裁掉的合併儲存格：取原始主儲存格的值
                origin = next((m for m in merges if m.contains(r, c)), None)
                if origin is not None:
                    cell = cell_at(origin.min_row, origin.min_col)

            text = display_value(cell.value)
            modified = False
            row_date = date_by_row.get(r)
            stripped = text.strip()
            if row_date and stripped:
                text, modified = _substitute(stripped, row_date, exchanges, users_by_email, users_by_mech)
                if not modified:
                    text = display_value(cell.value)

            col_span = None
            row_span = None
            if merge_info:
                row_span = merge_info[1]
                col_span = merge_info[2]
                if col_span > 1:
                    hidden_in_span = sum(1 for cc in range(c, c + col_span) if cc in hidden)
                    col_span = max(col_span - hidden_in_span, 1)

            row_cells.append(Cell(
                value=text,
                bg_color=cell_bg_color(cell),
                font_color=cell_font_color(cell),
                font_bold=cell_bold(cell),
                merge_row_span=row_span,
                merge_col_span=col_span,
                is_modified=modified,
            ))
        grid.rows.append(row_cells)
        grid.row_dates.append(date_by_row.get(r))

    return grid


def services_for(grid: ReconciledGrid, mechanographic_number: str) -> List[dict]:
    """列出網格中含有指定機械編號的日期列"""
    entries = []
    for row, row_date in zip(grid.rows, grid.row_dates):
        if row_date is None:
            continue
        matches = [cell for cell in row if not cell.is_merged_slave
                   and (cell.value or "").strip() == mechanographic_number]
        if not matches:
            continue
        raw = " | ".join(cell.value for cell in row if cell.value and not cell.is_merged_slave)
        entries.append({
            "date": row_date.strftime("%d/%m/%Y"),
            "mechanographic_number": mechanographic_number,
            "raw_text": raw,
            "is_modified": any(cell.is_modified for cell in matches),
        })
    return entries


class ReconciliationService:
    """班表對照服務"""

    @classmethod
    def build(cls, db: Session) -> Tuple[ReconciledGrid, int]:
        """下載已設定的 XLSX 並套用所有已接受的換班，返回 (網格, 換班數)"""
        url = SystemSettingsService.get(db, SCHEDULE_XLSX_LINK)
        if not url:
            raise LookupError(
                "Nenhuma escala XLSX configurada. O administrador precisa configurar o link XLSX."
            )
        exchanges = ShiftExchangeService.accepted(db)
        users = db.query(User).all()
        content = fetch_remote_file(url)
        grid = reconcile_workbook(content, exchanges, users)
        logger.info(f"班表對照完成：{len(exchanges)} 筆換班，{grid.modified_cells} 個儲存格被替換")
        return grid, len(exchanges)
