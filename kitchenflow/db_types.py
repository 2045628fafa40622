"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import Numeric, Uuid

# UUID type that works with both databases (native UUID on PostgreSQL, CHAR(32) on SQLite)
UUIDType = Uuid

# Money columns (prices, totals)
MoneyType = Numeric(12, 2)

# Stock quantities in the ingredient's own unit (grams, millilitres, pieces)
QuantityType = Numeric(14, 3)
