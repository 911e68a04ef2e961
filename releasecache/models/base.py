"""Declarative base for the cache tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
