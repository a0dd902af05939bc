"""
Resource catalog endpoints: restaurant table management.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.table import TableCreate, TableUpdate, TableResponse
from app.services.catalog_service import create_table, get_table, list_tables, update_table

router = APIRouter(prefix="/tables", tags=["Tables"])


@router.post("/", response_model=TableResponse, status_code=status.HTTP_201_CREATED)
async def create_table_endpoint(
    table_data: TableCreate,
    db: AsyncSession = Depends(get_db),
):
    return await create_table(db, table_data)


@router.get("/", response_model=list[TableResponse])
async def list_tables_endpoint(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    return await list_tables(db, active_only=active_only)


@router.get("/{table_id}", response_model=TableResponse)
async def get_table_endpoint(table_id: int, db: AsyncSession = Depends(get_db)):
    return await get_table(db, table_id)


@router.patch("/{table_id}", response_model=TableResponse)
async def update_table_endpoint(
    table_id: int,
    table_data: TableUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Management update; bumps the table version."""
    return await update_table(db, table_id, table_data)
