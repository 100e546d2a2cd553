from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, InvalidOperation

from sqlalchemy.dialects import postgresql, sqlite
from web3 import Web3

from extensions import db


AMOUNT_QUANT = Decimal("0.000001")
ZERO = Decimal("0")


def utcnow():
    """Naive UTC timestamp, matching how the models store DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value, field_name="amount"):
    if value is None:
        raise ValueError(f"{field_name} cannot be None")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f"Invalid {field_name}: {value!r}")
    if not result.is_finite():
        raise ValueError(f"{field_name} must be a finite number, got {value!r}")
    return result


def quantize_amount(value):
    return to_decimal(value).quantize(AMOUNT_QUANT, rounding=ROUND_DOWN)


def is_valid_address(address):
    return bool(address) and Web3.is_address(address)


def normalize_address(address):
    """Checksum an EVM address, or raise ValueError."""
    if not is_valid_address(address):
        raise ValueError(f"Invalid wallet address: {address!r}")
    return Web3.to_checksum_address(address)


_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_ignore(model, **values):
    """
    INSERT ... ON CONFLICT DO NOTHING for `model`.
    Returns True when a row was written, False when a unique constraint already held one.
    """
    dialect = db.engine.dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise RuntimeError(f"insert_ignore is not supported on {dialect}")

    table = model.__table__
    stmt = insert(table).values(**values).on_conflict_do_nothing()
    result = db.session.execute(stmt)
    return result.rowcount == 1


def decimal_str(value):
    """JSON-friendly rendering of a money amount."""
    if value is None:
        return "0"
    return format(to_decimal(value).normalize(), "f")


def jsonable(value):
    """Recursively render Decimals and datetimes for JSON responses."""
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return decimal_str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
