"""活动仓库 —— 收入事件与带生命周期业务记录的数据访问层。

管理系统中产生收入的活动事件（通话、短信），以及围绕号码的
业务流程记录（用户留言 CDIR、号码申请）。

活动事件写入时会：
- 从号码复制国家、业务类别、通道类型和当前持有人（保证历史报表准确）
- 在同一事务内为号码持有人的余额入账（余额唯一的入账路径）
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session, Query
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .entity_repos import MONEY_QUANTUM, to_money
from .errors import NotFound, ValidationError
from .lifecycle import (
    ensure_transition, MESSAGE_TRANSITIONS, NUMBER_REQUEST_TRANSITIONS
)
from .models import (
    CallLog, SmsLog, Number, User, UserMessage, NumberRequest
)
from .permissions import Caller, Capability


def _resolve_number(session: Session, event_data: Dict[str, Any]) -> Number:
    """按 number_id 或 number_value 找到事件所属号码。

    Raises:
        NotFound: 号码不存在。
        ValidationError: 两者均未提供。
    """
    if event_data.get("number_id") is not None:
        number = session.get(Number, event_data["number_id"])
        if number is None:
            raise NotFound("Number", event_data["number_id"])
        return number
    if event_data.get("number_value"):
        number = session.query(Number).filter(
            Number.value == event_data["number_value"]
        ).first()
        if number is None:
            raise NotFound("Number", event_data["number_value"])
        return number
    raise ValidationError("number_id or number_value is required")


def _credit_owner(session: Session, user_id: Optional[int],
                  revenue: Decimal) -> None:
    """在当前事务内为持有人入账。"""
    if user_id is None or not revenue:
        return
    user = session.query(User).filter(User.id == user_id).with_for_update().one()
    user.balance = (user.balance or Decimal("0")) + revenue


def _parse_non_negative_int(value: Any, field_name: str) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}: {value}")
    if result < 0:
        raise ValidationError(f"Invalid {field_name}: {value}")
    return result


class _ActivityRepository(BaseCRUD):
    """通话/短信仓库的共同部分：按时间范围和等值条件查询。"""

    model = None
    time_column = None

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _filtered(self, sess: Session,
                  start: Optional[datetime] = None,
                  end: Optional[datetime] = None,
                  country: Optional[str] = None,
                  service_type: Optional[str] = None,
                  user_id: Optional[int] = None) -> Query:
        model = self.model
        column = getattr(model, self.time_column)
        query = sess.query(model)
        if start is not None:
            query = query.filter(column >= start)
        if end is not None:
            query = query.filter(column < end)
        if country:
            query = query.filter(model.country_code == country.upper())
        if service_type:
            query = query.filter(model.service_type == service_type)
        if user_id is not None:
            query = query.filter(model.user_id == user_id)
        return query

    def query_range(self, start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    country: Optional[str] = None,
                    service_type: Optional[str] = None,
                    user_id: Optional[int] = None,
                    session: Optional[Session] = None) -> List[Any]:
        """按时间范围 [start, end) 及可选条件查询事件，按 id 升序。

        Args:
            start: 起始时间（含）。
            end: 结束时间（不含）。
            country: 国家代码等值过滤。
            service_type: 业务类别等值过滤。
            user_id: 只返回归属该用户的事件。
        """
        def _query(sess):
            return self._filtered(
                sess, start, end, country, service_type, user_id
            ).order_by(self.model.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class CallLogRepository(_ActivityRepository):
    """通话记录 仓库。

    通话收入未显式提供时按 ``rate_per_minute * duration / 60`` 计算。
    """

    model = CallLog
    time_column = "start_time"

    def record(self, call_data: Dict[str, Any]) -> CallLog:
        """写入一条通话记录并为号码持有人入账。

        Args:
            call_data: 通话数据字典，支持以下键：
                - number_id 或 number_value: 号码（必填其一）
                - duration: 通话时长，秒（可选，默认0）
                - revenue: 收入（可选，默认按费率计算）
                - start_time / end_time: 起止时间（可选，默认当前UTC时间）
                - caller / recipient / call_id / status / direction
                  / provider_name / recording: 可选

        Returns:
            新建的 CallLog 对象。

        Raises:
            NotFound: 号码不存在。
            ValidationError: 时长或收入无效。
        """
        duration = _parse_non_negative_int(call_data.get("duration", 0), "duration")
        with self._get_session() as session:
            number = _resolve_number(session, call_data)
            revenue = to_money(call_data.get("revenue"), "revenue")
            if revenue is None:
                rate = number.rate_per_minute or Decimal("0")
                revenue = (rate * duration / 60).quantize(
                    MONEY_QUANTUM, rounding=ROUND_HALF_UP
                )
            if not number.is_active:
                logger.warning(f"Recording call on inactive number {number.id}")

            log = CallLog(
                number_id=number.id,
                number_value=number.value,
                number_name=number.name,
                caller=call_data.get("caller"),
                recipient=call_data.get("recipient"),
                call_id=call_data.get("call_id"),
                duration=duration,
                revenue=revenue,
                status=call_data.get("status", "COMPLETED"),
                direction=call_data.get("direction", "INBOUND"),
                provider_name=call_data.get("provider_name"),
                recording=call_data.get("recording"),
                start_time=call_data.get("start_time") or datetime.utcnow(),
                end_time=call_data.get("end_time"),
                country_code=number.country_code,
                service_type=number.service_type,
                channel_type=number.channel_type,
                user_id=number.owner_id,
            )
            session.add(log)
            _credit_owner(session, number.owner_id, revenue)
            session.commit()
            session.refresh(log)
            logger.debug(f"Recorded call {log.id} on {number.value}: {revenue}")
            return log

    def total_seconds(self, user_id: Optional[int] = None,
                      session: Optional[Session] = None) -> int:
        logs = self.query_range(user_id=user_id, session=session)
        return sum(log.duration or 0 for log in logs)


class SmsLogRepository(_ActivityRepository):
    """短信记录 仓库。

    短信收入未显式提供时按号码的 ``rate_per_sms`` 计一条。
    """

    model = SmsLog
    time_column = "timestamp"

    def record(self, sms_data: Dict[str, Any]) -> SmsLog:
        """写入一条短信记录并为号码持有人入账。

        Args:
            sms_data: 短信数据字典，支持以下键：
                - number_id 或 number_value: 号码（必填其一）
                - message: 短信内容（可选）
                - message_length: 字符数（可选，默认 len(message)）
                - revenue: 收入（可选，默认 rate_per_sms）
                - timestamp: 时间（可选，默认当前UTC时间）
                - sender / recipient / message_id / status / direction
                  / provider_name: 可选

        Returns:
            新建的 SmsLog 对象。
        """
        message = sms_data.get("message")
        length = sms_data.get("message_length")
        if length is None:
            length = len(message or "")
        length = _parse_non_negative_int(length, "message_length")

        with self._get_session() as session:
            number = _resolve_number(session, sms_data)
            revenue = to_money(sms_data.get("revenue"), "revenue")
            if revenue is None:
                revenue = number.rate_per_sms or Decimal("0")
            if not number.is_active:
                logger.warning(f"Recording SMS on inactive number {number.id}")

            log = SmsLog(
                number_id=number.id,
                number_value=number.value,
                number_name=number.name,
                sender=sms_data.get("sender"),
                recipient=sms_data.get("recipient"),
                message=message,
                message_id=sms_data.get("message_id"),
                message_length=length,
                revenue=revenue,
                status=sms_data.get("status", "RECEIVED"),
                direction=sms_data.get("direction", "INBOUND"),
                provider_name=sms_data.get("provider_name"),
                timestamp=sms_data.get("timestamp") or datetime.utcnow(),
                country_code=number.country_code,
                service_type=number.service_type,
                channel_type=number.channel_type,
                user_id=number.owner_id,
            )
            session.add(log)
            _credit_owner(session, number.owner_id, revenue)
            session.commit()
            session.refresh(log)
            logger.debug(f"Recorded SMS {log.id} on {number.value}: {revenue}")
            return log


class UserMessageRepository(BaseCRUD):
    """用户留言（CDIR）仓库。

    状态只能从 pending 前进到 responded 或 archived；回到 pending 必须显式调用 reset。
    is_read 一旦为 True 不会自动变回 False。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_message(self, number_id: int, message: str,
                       sender_number: Optional[str] = None,
                       timestamp: Optional[datetime] = None) -> UserMessage:
        """保存一条入站留言。

        Raises:
            NotFound: 号码不存在。
            ValidationError: 留言内容为空。
        """
        if not message:
            raise ValidationError("message is required")
        with self._get_session() as session:
            self.require(Number, number_id, session=session)
            msg = self.create(
                UserMessage, session=session, number_id=number_id,
                message=message, sender_number=sender_number,
                timestamp=timestamp or datetime.utcnow()
            )
            session.commit()
            return msg

    def _transition(self, message_id: int, target: str,
                    **fields) -> UserMessage:
        with self._get_session() as session:
            msg = self.require(UserMessage, message_id, session=session)
            ensure_transition("UserMessage", MESSAGE_TRANSITIONS, msg.status, target)
            msg.status = target
            for key, value in fields.items():
                setattr(msg, key, value)
            session.commit()
            logger.info(f"UserMessage {message_id} -> {target}")
            return msg

    def mark_read(self, message_id: int) -> UserMessage:
        with self._get_session() as session:
            msg = self.require(UserMessage, message_id, session=session)
            msg.is_read = True
            session.commit()
            return msg

    def respond(self, message_id: int, response_text: str) -> UserMessage:
        """回复留言：状态变为 responded，并标记为已读。"""
        if not response_text:
            raise ValidationError("response_text is required")
        return self._transition(
            message_id, "responded", response_text=response_text,
            responded_at=datetime.utcnow(), is_read=True
        )

    def archive(self, message_id: int) -> UserMessage:
        return self._transition(message_id, "archived")

    def reset(self, message_id: int) -> UserMessage:
        """显式重置为 pending（is_read 保持不变）。"""
        with self._get_session() as session:
            msg = self.require(UserMessage, message_id, session=session)
            msg.status = "pending"
            session.commit()
            logger.info(f"UserMessage {message_id} reset to pending")
            return msg

    def _scoped(self, sess: Session, user_id: Optional[int]) -> Query:
        query = sess.query(UserMessage)
        if user_id is not None:
            query = query.join(Number, UserMessage.number_id == Number.id).filter(
                Number.owner_id == user_id
            )
        return query

    def list_history(self, user_id: Optional[int] = None,
                     status: Optional[str] = None,
                     session: Optional[Session] = None) -> List[UserMessage]:
        """CDIR 历史：可按持有人与状态过滤，最新在前。"""
        if status is not None and status not in MESSAGE_TRANSITIONS:
            raise ValidationError(f"Unknown UserMessage status: {status}")

        def _query(sess):
            query = self._scoped(sess, user_id)
            if status:
                query = query.filter(UserMessage.status == status)
            return query.order_by(
                UserMessage.timestamp.desc(), UserMessage.id.desc()
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def unread_count(self, user_id: Optional[int] = None,
                     session: Optional[Session] = None) -> int:
        def _query(sess):
            return self._scoped(sess, user_id).filter(
                UserMessage.is_read.is_(False)
            ).count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class NumberRequestRepository(BaseCRUD):
    """号码申请 仓库。

    每次状态变更都必须由拥有 MANAGE_NUMBER_REQUESTS 权限的调用者发起；
    交付（fulfilled）时把指定号码分配给申请人，与状态变更处于同一事务。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_request(self, user_id: int, country: str, service_type: str,
                       quantity: int = 1,
                       notes: Optional[str] = None) -> NumberRequest:
        """提交号码申请（pending）。

        Raises:
            NotFound: 用户不存在。
            ValidationError: 数量小于1或字段缺失。
        """
        if not country or not service_type:
            raise ValidationError("country and service_type are required")
        quantity = _parse_non_negative_int(quantity, "quantity")
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        with self._get_session() as session:
            self.require(User, user_id, session=session)
            request = self.create(
                NumberRequest, session=session, user_id=user_id,
                country=country.upper(), service_type=service_type,
                quantity=quantity, notes=notes, status="pending",
                assigned_numbers=[]
            )
            session.commit()
            logger.info(
                f"NumberRequest {request.id} created by user {user_id} "
                f"({quantity} x {request.country}/{service_type})"
            )
            return request

    def advance(self, request_id: int, new_status: str, actor: Caller,
                assigned_number_ids: Optional[List[int]] = None,
                notes: Optional[str] = None) -> NumberRequest:
        """推进号码申请状态。

        Args:
            request_id: 申请ID。
            new_status: 目标状态（approved / rejected / fulfilled）。
            actor: 发起变更的调用者。
            assigned_number_ids: 交付时分配的号码ID列表，数量须等于申请数量。
            notes: 管理员备注（可选）。

        Returns:
            更新后的 NumberRequest 对象。

        Raises:
            PermissionDenied: actor 无管理权限。
            NotFound: 申请或号码不存在。
            InvalidTransition: 状态不可达。
            ValidationError: 交付号码数量不符、已被占用或已停用。
        """
        actor.require(Capability.MANAGE_NUMBER_REQUESTS)

        with self._get_session() as session:
            request = session.query(NumberRequest).filter(
                NumberRequest.id == request_id
            ).with_for_update().first()
            if request is None:
                raise NotFound("NumberRequest", request_id)
            ensure_transition(
                "NumberRequest", NUMBER_REQUEST_TRANSITIONS,
                request.status, new_status
            )

            if new_status == "fulfilled":
                request.assigned_numbers = self._assign_numbers(
                    session, request, assigned_number_ids or []
                )

            old_status = request.status
            request.status = new_status
            request.updated_at = datetime.utcnow()
            if notes is not None:
                request.notes = notes
            session.commit()
            logger.info(
                f"NumberRequest {request_id} {old_status} -> {new_status} "
                f"by user {actor.user_id}"
            )
            return request

    @staticmethod
    def _assign_numbers(session: Session, request: NumberRequest,
                        number_ids: List[int]) -> List[int]:
        unique_ids = list(dict.fromkeys(number_ids))
        if len(unique_ids) != request.quantity:
            raise ValidationError(
                f"Request {request.id} needs {request.quantity} numbers, "
                f"got {len(unique_ids)}"
            )
        for number_id in unique_ids:
            number = session.query(Number).filter(
                Number.id == number_id
            ).with_for_update().first()
            if number is None:
                raise NotFound("Number", number_id)
            if not number.is_active:
                raise ValidationError(f"Number {number_id} is inactive")
            if number.owner_id is not None:
                raise ValidationError(f"Number {number_id} is already assigned")
            number.owner_id = request.user_id
        return unique_ids

    def list_requests(self, user_id: Optional[int] = None,
                      status: Optional[str] = None,
                      session: Optional[Session] = None) -> List[NumberRequest]:
        """列出申请，最新在前；user_id 非空时只返回该用户的申请。"""
        def _query(sess):
            query = sess.query(NumberRequest)
            if user_id is not None:
                query = query.filter(NumberRequest.user_id == user_id)
            if status:
                query = query.filter(NumberRequest.status == status)
            return query.order_by(NumberRequest.id.desc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
