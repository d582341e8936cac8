from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from .errors import InvalidRequest
from .models import Coupon
from .store import store_call


class AssetLedger(ABC):
    """Contract of the external system of record for coupon ownership."""

    @abstractmethod
    def is_redeemable(self, owner_id: str, coupon_id: str, merchant_id: str, at: datetime) -> bool:
        """True when ``owner_id`` holds an unredeemed, unexpired coupon at ``merchant_id``."""

    @abstractmethod
    def record_redemption(self, coupon_id: str, redeemed_at: datetime) -> bool:
        """Burn the coupon. Must be safe to repeat; False when it was already burned."""


class CouponLedger(AssetLedger):
    """Ledger backed by the ``coupons`` mirror table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def register(self, coupon_id: str, owner_id: str, merchant_id: str, expires_at: datetime) -> Coupon:
        coupon = Coupon(
            id=coupon_id,
            owner_id=owner_id,
            merchant_id=merchant_id,
            expires_at=expires_at,
            is_redeemed=False,
        )
        with store_call("register coupon"), self._session_factory() as db:
            db.add(coupon)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise InvalidRequest(f"coupon {coupon_id} already registered") from e
            db.refresh(coupon)
            return coupon

    def transfer(self, coupon_id: str, new_owner_id: str) -> bool:
        stmt = (
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.is_redeemed.is_(False))
            .values(owner_id=new_owner_id)
        )
        with store_call("transfer coupon"), self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1

    def get(self, coupon_id: str) -> Coupon | None:
        with store_call("get coupon"), self._session_factory() as db:
            return db.get(Coupon, coupon_id)

    def is_redeemable(self, owner_id: str, coupon_id: str, merchant_id: str, at: datetime) -> bool:
        coupon = self.get(coupon_id)
        if coupon is None:
            return False
        return (
            coupon.owner_id == owner_id
            and coupon.merchant_id == merchant_id
            and not coupon.is_redeemed
            and coupon.expires_at > at
        )

    def record_redemption(self, coupon_id: str, redeemed_at: datetime) -> bool:
        """Mark the coupon redeemed once. False means it already was (a replay)."""
        stmt = (
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.is_redeemed.is_(False))
            .values(is_redeemed=True, redeemed_at=redeemed_at)
        )
        with store_call("record redemption"), self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1
