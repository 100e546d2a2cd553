import logging
import time
from typing import Optional

from extensions import db
from models import PermitSignature, PermitStatus
from utils import normalize_address


logger = logging.getLogger(__name__)


class PermitRegistry:
    """Off-chain token permits on file, checked before a wallet is snapshotted."""

    def __init__(self, clock=time.time):
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def has_valid_permit(self, address: str) -> bool:
        """A pending (not yet consumed) permit whose deadline is still ahead."""
        if not address:
            return False
        owner = normalize_address(address)
        return db.session.query(
            PermitSignature.query.filter(
                PermitSignature.owner_address == owner,
                PermitSignature.status == PermitStatus.PENDING.value,
                PermitSignature.deadline > self.now(),
            ).exists()
        ).scalar()

    def record_permit(self, owner_address: str, spender_address: str, value, deadline: int,
                      nonce: int = 0, v: Optional[int] = None, r: Optional[str] = None,
                      s: Optional[str] = None, user_id: Optional[int] = None,
                      token_address: Optional[str] = None) -> PermitSignature:
        """
        Store a freshly signed permit. An older pending permit from the same owner
        is marked expired so one owner has one live permit at a time.
        """
        owner = normalize_address(owner_address)
        deadline = int(deadline)
        if deadline <= self.now():
            raise ValueError("Permit deadline is in the past")

        PermitSignature.query.filter_by(owner_address=owner, status=PermitStatus.PENDING.value).update(
            {"status": PermitStatus.EXPIRED.value}, synchronize_session=False
        )

        permit = PermitSignature(
            user_id=user_id,
            owner_address=owner,
            spender_address=normalize_address(spender_address),
            token_address=normalize_address(token_address) if token_address else None,
            value=str(value),
            nonce=int(nonce),
            deadline=deadline,
            v=v,
            r=r,
            s=s,
        )
        db.session.add(permit)
        db.session.flush()
        logger.info(f"Permit recorded for {owner} deadline={deadline}")
        return permit

    def expire_stale(self) -> int:
        """Mark pending permits past their deadline as expired."""
        count = PermitSignature.query.filter(
            PermitSignature.status == PermitStatus.PENDING.value,
            PermitSignature.deadline <= self.now(),
        ).update({"status": PermitStatus.EXPIRED.value}, synchronize_session=False)
        db.session.flush()
        return count
