from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from ..core.database import get_db
from ..core.security import get_current_active_user
from ..models.user import User
from ..schemas.reconciliation import ReconciledSchedule, MyServices
from ..services.reconciliation import ReconciliationService, ScheduleSourceError, services_for

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["reconciliation"])


def _build(db: Session):
    # 下載與解析 XLSX 為阻塞操作，兩個端點皆為同步函式，由執行緒池執行
    try:
        return ReconciliationService.build(db)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScheduleSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/reconciliation", response_model=ReconciledSchedule)
def read_reconciled_schedule(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """已發佈的 XLSX 班表套用所有已接受換班後的結果"""
    grid, exchange_count = _build(db)
    return ReconciledSchedule(
        rows=[[cell.__dict__ for cell in row] for row in grid.rows],
        header_month=grid.header_month,
        header_year=grid.header_year,
        accepted_exchanges=exchange_count,
        modified_cells=grid.modified_cells,
    )


@router.get("/reconciliation/my-services", response_model=MyServices)
def read_my_services(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """我在對照後班表中的服務日期"""
    grid, _ = _build(db)
    return MyServices(
        mechanographic_number=current_user.mechanographic_number,
        services=services_for(grid, current_user.mechanographic_number),
    )
