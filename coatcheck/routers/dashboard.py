from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.schemas import DashboardOut
from coatcheck.services.job_service import dashboard_summary

router = APIRouter(prefix='/api/dashboard', tags=['dashboard'])


@router.get('', response_model=DashboardOut)
def dashboard(_: Principal = Depends(require_capability(Capability.ADMIN_AREA)), db: Session = Depends(get_db)):
    return dashboard_summary(db)
