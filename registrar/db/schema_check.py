import asyncio
from typing import Dict, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

import registrar.auth.models  # noqa: F401  (registers auth.users on Base.metadata)
import registrar.core.models  # noqa: F401
from registrar.db.session import Base, engine


CREATE_SCHEMA_SQL: Dict[str, str] = {
    "core": "CREATE SCHEMA IF NOT EXISTS core;",
    "school": "CREATE SCHEMA IF NOT EXISTS school;",
    "auth": "CREATE SCHEMA IF NOT EXISTS auth;",
}

# Enrollments created before the academic_years table existed only carry year_number
ALTER_ENROLLMENTS_ACADEMIC_YEAR_ID = """
    DO $$
    BEGIN
        IF NOT EXISTS (
            SELECT 1 FROM information_schema.columns
            WHERE table_schema = 'school' AND table_name = 'annual_enrollments' AND column_name = 'academic_year_id'
        ) THEN
            ALTER TABLE school.annual_enrollments
                ADD COLUMN academic_year_id UUID REFERENCES core.academic_years(id) ON DELETE RESTRICT;
        END IF;
    END $$;
"""

ALTER_ENROLLMENTS_PROGRESSION = """
    DO $$
    BEGIN
        IF NOT EXISTS (
            SELECT 1 FROM information_schema.columns
            WHERE table_schema = 'school' AND table_name = 'annual_enrollments' AND column_name = 'suggested_next_class_id'
        ) THEN
            ALTER TABLE school.annual_enrollments
                ADD COLUMN suggested_next_class_id UUID REFERENCES core.classes(id),
                ADD COLUMN progression_computed_at TIMESTAMPTZ;
        END IF;
    END $$;
"""


async def ensure_tables(db_engine: AsyncEngine) -> None:
    """
    Ensure that all required schemas/tables exist in the connected database.
    Missing tables are created from the ORM metadata; existing ones get column backfills.
    """
    async with db_engine.begin() as conn:
        for schema, ddl in CREATE_SCHEMA_SQL.items():
            await conn.execute(text(ddl))

        missing: List[str] = []
        for table in Base.metadata.sorted_tables:
            full_name = f"{table.schema}.{table.name}"
            result = await conn.execute(text("SELECT to_regclass(:relname)"), {"relname": full_name})
            if result.scalar() is None:
                missing.append(full_name)

        await conn.run_sync(Base.metadata.create_all)

        await conn.execute(text(ALTER_ENROLLMENTS_ACADEMIC_YEAR_ID))
        await conn.execute(text(ALTER_ENROLLMENTS_PROGRESSION))

    if missing:
        print("Created missing tables: " + ", ".join(missing))
    else:
        print("All required tables already exist in the database.")


async def main() -> None:
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
