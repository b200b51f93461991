"""SQL filter fragments for the library query builders.

Each builder returns a SQLAlchemy boolean expression, or None when the
criterion is absent or empty. None means "no fragment": callers must drop it
rather than substitute an always-true clause. Unknown modifiers are logged and
also return None so a stale client never takes a listing down.
"""

import logging

from sqlalchemy import and_, or_, select, func, distinct

from peek.db.schemas import (
    NumberCriterion, DateCriterion, TextCriterion, MultiCriterion, IdCriterion,
)

logger = logging.getLogger(__name__)


def _unknown_modifier(kind: str, modifier: str):
    logger.warning(f"Ignoring {kind} filter with unknown modifier {modifier!r}")
    return None


def escape_like(value: str) -> str:
    """Escape SQL LIKE wildcard characters in user input."""
    return value.replace("\\", "\\\\").replace("%", r"\%").replace("_", r"\_")


def _contains(column, value: str):
    return column.ilike(f"%{escape_like(value)}%", escape="\\")


# ============ Scalar filters ============

def _compare(kind: str, column, modifier: str, value, value2):
    """Shared comparison logic for numeric and date criteria."""
    if modifier == "IS_NULL":
        return column.is_(None)
    if modifier == "NOT_NULL":
        return column.is_not(None)
    if value is None:
        return None

    if modifier == "EQUALS":
        return column == value
    if modifier == "NOT_EQUALS":
        return column != value
    if modifier == "GREATER_THAN":
        return column > value
    if modifier == "LESS_THAN":
        return column < value
    if modifier == "BETWEEN":
        if value2 is None:
            return column >= value
        return column.between(value, value2)
    if modifier == "NOT_BETWEEN":
        if value2 is None:
            return column < value
        return or_(column < value, column > value2)
    return _unknown_modifier(kind, modifier)


def number_filter(column, criterion: NumberCriterion | None):
    if criterion is None:
        return None
    return _compare("numeric", column, criterion.modifier, criterion.value, criterion.value2)


def date_filter(column, criterion: DateCriterion | None):
    if criterion is None:
        return None
    return _compare("date", column, criterion.modifier, criterion.value, criterion.value2)


def text_filter(columns: list, criterion: TextCriterion | None):
    """Case-insensitive text match. INCLUDES matches if any column contains the value."""
    if criterion is None:
        return None
    modifier = criterion.modifier

    if modifier == "IS_NULL":
        return and_(*[or_(col.is_(None), col == "") for col in columns])
    if modifier == "NOT_NULL":
        return or_(*[and_(col.is_not(None), col != "") for col in columns])

    value = criterion.value.strip()
    if not value:
        return None

    if modifier == "INCLUDES":
        return or_(*[_contains(col, value) for col in columns])
    if modifier == "EXCLUDES":
        return and_(*[or_(col.is_(None), ~_contains(col, value)) for col in columns])
    if modifier == "EQUALS":
        return or_(*[func.lower(col) == value.lower() for col in columns])
    if modifier == "NOT_EQUALS":
        return and_(*[or_(col.is_(None), func.lower(col) != value.lower()) for col in columns])
    return _unknown_modifier("text", modifier)


def search_filter(columns: list, q: str | None):
    """Free-text search across a fixed column set."""
    if not q or not q.strip():
        return None
    return or_(*[_contains(col, q.strip()) for col in columns])


def bool_filter(column, value: bool | None):
    if value is None:
        return None
    if value:
        return column == True  # noqa: E712
    return or_(column == False, column.is_(None))  # noqa: E712


def id_filter(pk_column, criterion: IdCriterion | None):
    if criterion is None or not criterion.value:
        return None
    if criterion.modifier == "INCLUDES":
        return pk_column.in_(criterion.value)
    if criterion.modifier == "EXCLUDES":
        return pk_column.not_in(criterion.value)
    return _unknown_modifier("id", criterion.modifier)


def orientation_filter(width, height, orientations: list[str] | None):
    """LANDSCAPE / PORTRAIT / SQUARE by frame dimensions."""
    if not orientations:
        return None
    shapes = {
        "LANDSCAPE": width > height,
        "PORTRAIT": height > width,
        "SQUARE": width == height,
    }
    clauses = []
    for orientation in orientations:
        clause = shapes.get(orientation.upper())
        if clause is None:
            logger.warning(f"Ignoring unknown orientation {orientation!r}")
            continue
        clauses.append(clause)
    if not clauses:
        return None
    return or_(*clauses)


# ============ Relation filters ============

def membership_filter(pk_column, owner_col, related_col, criterion: MultiCriterion | None, values=None):
    """Relation membership via a subquery on a join table (or union of join tables).

    owner_col / related_col are the join table's columns pointing at the listed
    entity and at the related entity. `values` overrides criterion.value
    (e.g. after hierarchy expansion).
    """
    if criterion is None:
        return None
    modifier = criterion.modifier

    if modifier == "IS_NULL":
        return pk_column.not_in(select(owner_col))
    if modifier == "NOT_NULL":
        return pk_column.in_(select(owner_col))

    values = list(values if values is not None else criterion.value)
    if not values:
        return None

    if modifier == "INCLUDES":
        return pk_column.in_(select(owner_col).where(related_col.in_(values)))
    if modifier == "INCLUDES_ALL":
        return pk_column.in_(
            select(owner_col)
            .where(related_col.in_(values))
            .group_by(owner_col)
            .having(func.count(distinct(related_col)) == len(set(values)))
        )
    if modifier == "EXCLUDES":
        return pk_column.not_in(select(owner_col).where(related_col.in_(values)))
    return _unknown_modifier("relation", modifier)


def foreign_key_filter(fk_column, criterion: MultiCriterion | None, values=None):
    """Membership for a single-valued relation stored as a foreign key column."""
    if criterion is None:
        return None
    modifier = criterion.modifier

    if modifier == "IS_NULL":
        return fk_column.is_(None)
    if modifier == "NOT_NULL":
        return fk_column.is_not(None)

    values = list(values if values is not None else criterion.value)
    if not values:
        return None

    if modifier == "INCLUDES":
        return fk_column.in_(values)
    if modifier == "INCLUDES_ALL":
        # A single-valued column can only equal every value when they coincide
        return and_(*[fk_column == value for value in set(values)])
    if modifier == "EXCLUDES":
        return or_(fk_column.is_(None), fk_column.not_in(values))
    return _unknown_modifier("relation", modifier)


def favorite_related_filter(pk_column, owner_col, related_col, favorites_subquery, value: bool | None):
    """Listed entity is linked to at least one (True) / no (False) favorited related entity."""
    if value is None:
        return None
    linked = select(owner_col).where(related_col.in_(favorites_subquery))
    if value:
        return pk_column.in_(linked)
    return pk_column.not_in(linked)
