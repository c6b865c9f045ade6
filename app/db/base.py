# app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All clinic tables (inventory, billing, pharmacy, lab) inherit from this."""
    pass


def import_all_models() -> None:
    """Import every model module so metadata is complete for create_all()."""
    from app.models import (  # noqa: F401
        inventory,
        billing,
        prescription,
        lab,
    )
