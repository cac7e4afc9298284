"""Court listing (for booking dropdowns and admin block forms)."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.models.court import Court
from courtslot.schemas import CourtOut

router = APIRouter(prefix="/courts", tags=["courts"])


@router.get("", response_model=list[CourtOut])
async def list_courts(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Court).where(Court.is_active.is_(True)).order_by(Court.id))
    return result.scalars().all()
