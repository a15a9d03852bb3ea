"""Holiday calendar endpoints."""
import uuid
from datetime import date
from typing import Optional, List

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.api.deps import TenantDB, CurrentUser, HRUser
from app.models.hr import Holiday
from app.schemas.hr import HolidayCreate, HolidayResponse

router = APIRouter()


@router.get("", response_model=List[HolidayResponse])
async def list_holidays(
    db: TenantDB,
    current_user: CurrentUser,
    year: Optional[int] = None,
):
    """List holidays, optionally for one calendar year."""
    query = select(Holiday).order_by(Holiday.holiday_date)
    if year:
        query = query.where(
            Holiday.holiday_date >= date(year, 1, 1),
            Holiday.holiday_date <= date(year, 12, 31),
        )
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=HolidayResponse, status_code=status.HTTP_201_CREATED)
async def create_holiday(
    data: HolidayCreate,
    db: TenantDB,
    current_user: HRUser,
):
    """Declare a holiday. One holiday per date."""
    existing = await db.execute(select(Holiday).where(Holiday.holiday_date == data.holiday_date))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A holiday already exists for this date"
        )

    holiday = Holiday(
        name=data.name,
        holiday_date=data.holiday_date,
        type=data.type.value,
        description=data.description,
    )
    db.add(holiday)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A holiday already exists for this date"
        )
    return holiday


@router.delete("/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_holiday(
    holiday_id: uuid.UUID,
    db: TenantDB,
    current_user: HRUser,
):
    holiday = await db.get(Holiday, holiday_id)
    if not holiday:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Holiday not found")
    await db.delete(holiday)
    await db.commit()
