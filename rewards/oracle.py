import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from gevent.pool import Pool

from utils import to_decimal


logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 10


def _safe_read(oracle, address: str) -> Tuple[str, Optional[Decimal]]:
    try:
        return address, to_decimal(oracle.read_balance(address), "balance")
    except Exception as e:
        logger.warning(f"Balance read failed for {address}: {e}")
        return address, None


def read_balances(oracle, addresses: Iterable[str], pool_size: int = DEFAULT_POOL_SIZE) -> Dict[str, Decimal]:
    """
    Read balances concurrently. Addresses whose read fails are absent from the
    result; callers skip them for this round.
    """
    unique = list(dict.fromkeys(a for a in addresses if a))
    if not unique:
        return {}

    pool = Pool(max(1, min(pool_size, len(unique))))
    results = pool.map(lambda address: _safe_read(oracle, address), unique)

    balances = {address: balance for address, balance in results if balance is not None}
    missing = len(unique) - len(balances)
    if missing:
        logger.info(f"Balance snapshot: {len(balances)} read, {missing} skipped")
    return balances
