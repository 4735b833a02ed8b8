"""提现账本 —— 提现申请与余额扣减。

状态机：pending → processing → completed | failed，或 pending → rejected。

规则：
- 申请时金额不能超过可用余额（余额减去仍在途的 pending/processing 提现），
  因此同一用户的多笔在途申请合计也不会超过余额。
- 申请时不扣款；只有进入 completed 时才扣减余额并记录 processed_at，
  扣款与状态变更在同一事务内提交，任何一步失败都整体回滚。
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from sqlalchemy import func
from sqlalchemy.orm import Session
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .entity_repos import PAYMENT_METHODS, to_money
from .errors import InsufficientBalance, NotFound, ValidationError
from .lifecycle import ensure_transition, PAYOUT_TRANSITIONS
from .models import Payout, User
from .permissions import Caller, Capability

OPEN_STATUSES = ("pending", "processing")


class PayoutLedger(BaseCRUD):
    """提现账本。

    Example::

        ledger = PayoutLedger(conn)
        payout = ledger.request_payout(user_id, Decimal("40"))
        ledger.advance(payout.id, "processing")
        ledger.advance(payout.id, "completed", transaction_id="tx-1")
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    @staticmethod
    def _reserved(session: Session, user_id: int) -> Decimal:
        total = session.query(func.coalesce(func.sum(Payout.amount), 0)).filter(
            Payout.user_id == user_id,
            Payout.status.in_(OPEN_STATUSES)
        ).scalar()
        return Decimal(str(total))

    @staticmethod
    def _lock_user(session: Session, user_id: int) -> User:
        user = session.query(User).filter(
            User.id == user_id
        ).with_for_update().first()
        if user is None:
            raise NotFound("User", user_id)
        return user

    def available_balance(self, user_id: int,
                          session: Optional[Session] = None) -> Decimal:
        """可用余额 = 余额 - 在途提现合计。

        Raises:
            NotFound: 用户不存在。
        """
        def _query(sess):
            user = self.require(User, user_id, session=sess)
            return (user.balance or Decimal("0")) - self._reserved(sess, user_id)

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def request_payout(self, user_id: int, amount: Any,
                       method: Optional[str] = None,
                       notes: Optional[str] = None) -> Payout:
        """发起提现申请（pending，不扣款）。

        Args:
            user_id: 用户ID。
            amount: 提现金额，必须大于0。
            method: 收款方式（usdt / bank），默认使用用户资料中的方式。
            notes: 备注（可选）。

        Returns:
            新建的 Payout 对象。

        Raises:
            NotFound: 用户不存在。
            ValidationError: 金额或收款方式无效。
            InsufficientBalance: 金额超过可用余额，此时不创建任何记录。
        """
        amount = to_money(amount, "amount")
        if amount is None or amount <= 0:
            raise ValidationError("Payout amount must be positive")

        with self._get_session() as session:
            user = self._lock_user(session, user_id)
            payment_method = method or user.payment_method
            if payment_method not in PAYMENT_METHODS:
                raise ValidationError(f"Unknown payment method: {payment_method}")

            available = (user.balance or Decimal("0")) - self._reserved(session, user_id)
            if amount > available:
                logger.warning(
                    f"Payout of {amount} refused for user {user_id}: "
                    f"available {available}"
                )
                raise InsufficientBalance(amount, available)

            payout = Payout(
                user_id=user_id,
                amount=amount,
                status="pending",
                payment_method=payment_method,
                notes=notes,
                requested_at=datetime.utcnow(),
            )
            session.add(payout)
            session.commit()
            session.refresh(payout)
            logger.info(f"Payout {payout.id} requested by user {user_id}: {amount}")
            return payout

    def advance(self, payout_id: int, new_status: str,
                actor: Optional[Caller] = None,
                transaction_id: Optional[str] = None,
                notes: Optional[str] = None) -> Payout:
        """推进提现状态。

        进入 completed 时在同一事务内扣减余额并记录 processed_at。

        Args:
            payout_id: 提现ID。
            new_status: 目标状态。
            actor: 发起变更的调用者；提供时须拥有 MANAGE_PAYOUTS 权限。
            transaction_id: 支付流水号（可选）。
            notes: 备注（可选）。

        Returns:
            更新后的 Payout 对象。

        Raises:
            PermissionDenied: actor 无权限。
            NotFound: 提现不存在。
            InvalidTransition: 状态不可达。
            InsufficientBalance: 完成时余额已不足（不扣款、不变更状态）。
        """
        if actor is not None:
            actor.require(Capability.MANAGE_PAYOUTS)

        with self._get_session() as session:
            payout = session.query(Payout).filter(
                Payout.id == payout_id
            ).with_for_update().first()
            if payout is None:
                raise NotFound("Payout", payout_id)
            ensure_transition("Payout", PAYOUT_TRANSITIONS, payout.status, new_status)

            if new_status == "completed":
                user = self._lock_user(session, payout.user_id)
                balance = user.balance or Decimal("0")
                if payout.amount > balance:
                    logger.error(
                        f"Payout {payout_id} cannot complete: balance {balance} "
                        f"< amount {payout.amount}"
                    )
                    raise InsufficientBalance(payout.amount, balance)
                user.balance = balance - payout.amount
                payout.processed_at = datetime.utcnow()

            old_status = payout.status
            payout.status = new_status
            if transaction_id is not None:
                payout.transaction_id = transaction_id
            if notes is not None:
                payout.notes = notes
            session.commit()
            logger.info(f"Payout {payout_id} {old_status} -> {new_status}")
            return payout

    def list_payouts(self, user_id: Optional[int] = None,
                     status: Optional[str] = None,
                     session: Optional[Session] = None) -> List[Payout]:
        """提现历史，最新在前；user_id 非空时只返回该用户的记录。"""
        if status is not None and status not in PAYOUT_TRANSITIONS:
            raise ValidationError(f"Unknown Payout status: {status}")

        def _query(sess):
            query = sess.query(Payout)
            if user_id is not None:
                query = query.filter(Payout.user_id == user_id)
            if status:
                query = query.filter(Payout.status == status)
            return query.order_by(Payout.id.desc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def status_summary(self, user_id: Optional[int] = None,
                       session: Optional[Session] = None
                       ) -> Dict[str, Dict[str, Any]]:
        """按状态统计提现笔数与金额（所有状态都会出现，空状态为 0）。"""
        def _query(sess):
            query = sess.query(
                Payout.status, func.count(Payout.id), func.sum(Payout.amount)
            )
            if user_id is not None:
                query = query.filter(Payout.user_id == user_id)
            rows = query.group_by(Payout.status).all()
            summary = {
                status: {"count": 0, "amount": Decimal("0")}
                for status in PAYOUT_TRANSITIONS
            }
            for status, count, amount in rows:
                summary[status] = {
                    "count": count,
                    "amount": Decimal(str(amount or 0)),
                }
            return summary

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def completed_total(self, user_id: int,
                        session: Optional[Session] = None) -> Decimal:
        """已完成提现总额。"""
        def _query(sess):
            total = sess.query(func.coalesce(func.sum(Payout.amount), 0)).filter(
                Payout.user_id == user_id, Payout.status == "completed"
            ).scalar()
            return Decimal(str(total))

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
