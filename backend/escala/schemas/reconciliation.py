from pydantic import BaseModel
from typing import Optional, List

class GridCell(BaseModel):
    value: Optional[str] = None
    bg_color: Optional[str] = None
    font_color: Optional[str] = None
    font_bold: bool = False
    is_merged_slave: bool = False
    merge_row_span: Optional[int] = None
    merge_col_span: Optional[int] = None
    is_modified: bool = False

class ReconciledSchedule(BaseModel):
    rows: List[List[GridCell]]
    header_month: Optional[int] = None
    header_year: Optional[int] = None
    accepted_exchanges: int
    modified_cells: int

class ServiceEntry(BaseModel):
    date: str
    mechanographic_number: str
    raw_text: str
    is_modified: bool = False

class MyServices(BaseModel):
    mechanographic_number: str
    services: List[ServiceEntry]
