from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.user import BrandProfile, CreatorProfile, User


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_brand_profile(db: AsyncSession, user_id: int) -> BrandProfile | None:
    result = await db.execute(
        select(BrandProfile).where(BrandProfile.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_creator_profile(db: AsyncSession, user_id: int) -> CreatorProfile | None:
    result = await db.execute(
        select(CreatorProfile).where(CreatorProfile.user_id == user_id)
    )
    return result.scalar_one_or_none()
