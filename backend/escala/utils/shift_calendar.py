"""
日曆工具模組
葡萄牙國定假日、日期類型與各日期可選班別
"""

from datetime import date, timedelta
from functools import lru_cache
from typing import Dict, List, Set

from dateutil.easter import easter, EASTER_WESTERN

# 班別代碼與顯示名稱
SHIFT_LABELS: Dict[str, str] = {
    "day": "Turno Diurno",
    "overnight": "Pernoite",
    "morning": "Turno Manhã",
    "afternoon": "Turno Tarde",
    "night": "Turno Noite",
}

WEEKDAY_SHIFTS = ["day", "overnight"]
WEEKEND_SHIFTS = ["morning", "afternoon", "night", "overnight"]

# 每月提交表單中的可選項目
SUBMISSION_SHIFTS = [
    "Segunda-feira", "Terça-feira", "Quarta-feira", "Quinta-feira", "Sexta-feira",
    "Sábado_manhã", "Sábado_tarde", "Sábado_noite",
    "Domingo_manhã", "Domingo_noite",
]
SUBMISSION_OVERNIGHTS = ["Dom/Seg", "Seg/Ter", "Ter/Qua", "Qua/Qui", "Qui/Sex", "Sex/Sab", "Sab/Dom"]

WEEKDAY_ORDER = [
    "Segunda-feira", "Terça-feira", "Quarta-feira", "Quinta-feira",
    "Sexta-feira", "Sábado", "Domingo",
]

# 固定日期假日 (月, 日)
FIXED_HOLIDAYS = [
    (1, 1),    # Ano Novo
    (4, 25),   # Dia da Liberdade
    (5, 1),    # Dia do Trabalhador
    (6, 10),   # Dia de Portugal
    (6, 13),   # Santo António
    (6, 24),   # São João
    (6, 29),   # São Pedro
    (8, 15),   # Assunção de Nossa Senhora
    (10, 5),   # Implantação da República
    (11, 1),   # Todos os Santos
    (12, 1),   # Restauração da Independência
    (12, 8),   # Imaculada Conceição
    (12, 25),  # Natal
]

def easter_sunday(year: int) -> date:
    """西方（格里曆）復活節日期"""
    return easter(year, EASTER_WESTERN)

@lru_cache(maxsize=64)
def portuguese_holidays(year: int) -> Set[date]:
    """返回該年度所有葡萄牙假日（含復活節相關的移動假日）"""
    holidays = {date(year, month, day) for month, day in FIXED_HOLIDAYS}
    sunday = easter_sunday(year)
    holidays.add(sunday - timedelta(days=47))  # Carnaval
    holidays.add(sunday - timedelta(days=2))   # Sexta-feira Santa
    holidays.add(sunday)                       # Páscoa
    holidays.add(sunday + timedelta(days=60))  # Corpo de Deus
    return holidays

def is_holiday(d: date) -> bool:
    return d in portuguese_holidays(d.year)

def is_weekend_or_holiday(d: date) -> bool:
    return d.weekday() >= 5 or is_holiday(d)

def day_type(d: date) -> str:
    """返回 weekday、weekend 或 holiday"""
    if is_holiday(d):
        return "holiday"
    if d.weekday() >= 5:
        return "weekend"
    return "weekday"

def shift_options(d: date) -> List[str]:
    """返回指定日期可選的班別代碼"""
    if is_weekend_or_holiday(d):
        return list(WEEKEND_SHIFTS)
    return list(WEEKDAY_SHIFTS)

def is_valid_shift_for_date(d: date, shift: str) -> bool:
    return shift in shift_options(d)

def shift_label(shift: str) -> str:
    return SHIFT_LABELS.get(shift, shift)

def sort_by_weekday(items: List[str]) -> List[str]:
    """依星期順序排序，未知項目排在最後並保持原順序"""
    def sort_key(item: str):
        base = item.split("_")[0]
        if base in WEEKDAY_ORDER:
            return (0, WEEKDAY_ORDER.index(base))
        return (1, 0)
    return sorted(items, key=sort_key)
