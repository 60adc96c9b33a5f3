"""
Base ORM Model.

============================================================
PURPOSE
============================================================
Provides the declarative base used by all ORM models in the
supervisor's persistence boundary.

============================================================
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All monitoring tables inherit from this base so that a single
    ``Base.metadata.create_all`` builds the whole schema.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }
