from datetime import date

import pytest

from escala.utils.shift_calendar import (
    day_type,
    easter_sunday,
    is_holiday,
    shift_options,
    sort_by_weekday,
)


@pytest.mark.parametrize("year, expected", [
    (2024, date(2024, 3, 31)),
    (2025, date(2025, 4, 20)),
    (2026, date(2026, 4, 5)),
])
def test_easter_sunday(year, expected):
    assert easter_sunday(year) == expected


def test_movable_holidays_2025():
    assert is_holiday(date(2025, 3, 4))    # Carnaval
    assert is_holiday(date(2025, 4, 18))   # Sexta-feira Santa
    assert is_holiday(date(2025, 6, 19))   # Corpo de Deus
    assert not is_holiday(date(2025, 3, 10))


def test_fixed_holidays():
    assert is_holiday(date(2025, 4, 25))
    assert is_holiday(date(2025, 12, 25))
    assert day_type(date(2025, 12, 8)) == "holiday"


def test_shift_options_by_day_type():
    assert shift_options(date(2025, 3, 10)) == ["day", "overnight"]
    assert shift_options(date(2025, 3, 15)) == ["morning", "afternoon", "night", "overnight"]
    assert day_type(date(2025, 3, 16)) == "weekend"


def test_sort_by_weekday():
    items = ["Sábado_manhã", "Segunda-feira", "Outro", "Quarta-feira"]
    assert sort_by_weekday(items) == ["Segunda-feira", "Quarta-feira", "Sábado_manhã", "Outro"]
