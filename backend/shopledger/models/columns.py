from __future__ import annotations

from ..extensions import db


def enum_column(enum_cls, *, default=None, nullable: bool = False, index: bool = False):
    """String column holding the member *value* of a closed enum."""
    return db.Column(
        db.Enum(
            enum_cls,
            name=enum_cls.__name__.lower(),
            native_enum=False,
            create_constraint=True,
            length=32,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        nullable=nullable,
        default=default,
        index=index,
    )
