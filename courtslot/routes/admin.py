"""Admin routes: booking oversight, blackout blocks, stats, audit, player policy."""

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.core.dependencies import require_admin
from courtslot.models.member import User
from courtslot.schemas import (
    AdminCancelRequest,
    AdminStatsOut,
    BlockCreate,
    BlockCreateOut,
    BlockOut,
    CancellationRecordOut,
    CancelOut,
    ReservationOut,
    UserOut,
    UserUpdate,
)
from courtslot.services.admin import (
    AdminListMode,
    dashboard_stats,
    list_admin_reservations,
    list_audit,
    list_users,
    update_user,
)
from courtslot.services.blocks import create_blackout_blocks, delete_blackout_block, list_blocks
from courtslot.services.email import deliver
from courtslot.services.lifecycle import cancel_by_admin

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@router.get("/bookings", response_model=list[ReservationOut])
async def admin_list_bookings(
    mode: AdminListMode = Query(AdminListMode.DEFAULT),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_admin_reservations(db, admin, mode)


@router.post("/bookings/{reservation_id}/cancel", response_model=CancelOut)
async def admin_cancel_booking(
    reservation_id: int,
    body: AdminCancelRequest | None = Body(None),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await cancel_by_admin(db, reservation_id, admin, reason=body.reason if body else None)
    await db.commit()
    await deliver(result.notices)
    return CancelOut(message="Booking cancelled successfully. All participants notified.")


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


@router.get("/blocks", response_model=list[BlockOut])
async def admin_list_blocks(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_blocks(db)


@router.post("/blocks", response_model=BlockCreateOut, status_code=status.HTTP_201_CREATED)
async def admin_create_blocks(
    body: BlockCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await create_blackout_blocks(
        db,
        admin,
        court_ids=body.court_ids,
        lots=body.lots,
        start_date=body.start_date,
        end_date=body.end_date,
        reason=body.reason,
    )
    await db.commit()
    await deliver(result.notices)
    return BlockCreateOut(
        created=[BlockOut.model_validate(b) for b in result.blocks],
        cancelled_count=result.cancelled_count,
    )


@router.delete("/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_block(
    block_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await delete_blackout_block(db, admin, block_id)
    await db.commit()


# ---------------------------------------------------------------------------
# Stats, audit and users
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=AdminStatsOut)
async def admin_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_stats(db)


@router.get("/audit", response_model=list[CancellationRecordOut])
async def admin_audit(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_audit(db)


@router.get("/users", response_model=list[UserOut])
async def admin_list_users(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_users(db)


@router.post("/users/{user_id}", response_model=UserOut)
async def admin_update_user(
    user_id: int,
    body: UserUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await update_user(db, admin, user_id, play_policy=body.play_policy, is_banned=body.is_banned)
    await db.commit()
    return user
