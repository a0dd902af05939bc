"""
Restaurant table: the physical seating resource the engine allocates.

Key design decisions:
- Capacity is a range (min_capacity..max_capacity); a single table only seats
  parties inside its range, a two-table combination only needs the summed max
- `combinable_with` narrows which partners a combinable table accepts
  (empty list = any combinable table)
- `version` column enables optimistic locking: claiming a table for a booking
  bumps it, so two transactions racing for the same table cannot both win
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, JSON, CheckConstraint, Index

from app.db.base import Base, TimestampMixin


class RestaurantTable(Base, TimestampMixin):
    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True)
    table_number = Column(Integer, nullable=False, unique=True)
    min_capacity = Column(Integer, nullable=False, default=1)
    max_capacity = Column(Integer, nullable=False)
    table_type = Column(String(30), nullable=False, default="standard")
    section = Column(String(50), nullable=True)
    combinable = Column(Boolean, nullable=False, default=False)
    combinable_with = Column(JSON, nullable=False, default=list)
    priority_score = Column(Float, nullable=False, default=0.0)
    active = Column(Boolean, nullable=False, default=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("min_capacity > 0", name="check_table_min_capacity_positive"),
        CheckConstraint("max_capacity >= min_capacity", name="check_table_capacity_range"),
        Index("ix_restaurant_tables_active", "active"),
    )

    def accepts_partner(self, other: "RestaurantTable") -> bool:
        partners = self.combinable_with or []
        return not partners or other.id in partners

    def __repr__(self) -> str:
        return (
            f"<RestaurantTable(id={self.id}, number={self.table_number}, "
            f"capacity={self.min_capacity}-{self.max_capacity}, active={self.active})>"
        )
