import asyncio

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from skillify.core.enum import RoleName
from skillify.db.models.database import Base, Role

ROLE_DETAILS = {
    RoleName.ADMIN.value: "Platform administrators",
    RoleName.INSTRUCTOR.value: "Create and sell courses",
    RoleName.STUDENT.value: "Enroll in courses",
    RoleName.USER.value: "Registered account without a learning role yet",
}


async def get_or_create_role(db: AsyncSession, role_name: str) -> Role:
    role = await db.scalar(select(Role).where(Role.role_name == role_name))
    if not role:
        role = Role(role_name=role_name, details=ROLE_DETAILS.get(role_name))
        db.add(role)
        await db.flush()
    return role


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and seed the role catalogue."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as db:
        for role_name in ROLE_DETAILS:
            await get_or_create_role(db, role_name)
        await db.commit()
    logger.info("Database schema ready")


if __name__ == "__main__":
    from skillify.db.session import engine

    asyncio.run(init_db(engine))
