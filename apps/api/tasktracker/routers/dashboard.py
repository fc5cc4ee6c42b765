from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.dashboard.service import get_overview
from tasktracker.deps import get_current_user, get_db
from tasktracker.models import User
from tasktracker.schemas import DashboardOverviewOut

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/overview", response_model=DashboardOverviewOut)
async def overview(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> DashboardOverviewOut:
  return DashboardOverviewOut(**await get_overview(db, user))
