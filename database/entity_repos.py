"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（用户、号码、服务商、API 集成、系统设置），
这些实体本身不产生收入，是活动事件与提现的引用对象。

每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import or_
from sqlalchemy.orm import Session
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .errors import NotFound, ValidationError
from .models import (
    User, Number, CallLog, SmsLog, Provider, ApiIntegration, Setting
)
from .permissions import parse_role

CHANNEL_TYPES = ("voice", "sms", "combined")
PAYMENT_METHODS = ("usdt", "bank")
INTEGRATION_TYPES = ("smpp", "http", "api")

# 与 Numeric(14, 4) 金额列的精度一致
MONEY_QUANTUM = Decimal("0.0001")


def to_decimal(value: Any, field_name: str = "amount") -> Optional[Decimal]:
    """把输入金额转换为 Decimal（None 保持 None）。

    Raises:
        ValidationError: 无法解析或为负数。
    """
    if value is None:
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ValidationError(f"Invalid {field_name}: {value}")
    if not result.is_finite() or result < 0:
        raise ValidationError(f"Invalid {field_name}: {value}")
    return result


def to_money(value: Any, field_name: str = "amount") -> Optional[Decimal]:
    """转换为 Decimal 并按 ROUND_HALF_UP 舍入到金额列精度（4 位小数）。

    入库值与入账值必须完全相同，余额才能与流水逐笔对上。
    """
    result = to_decimal(value, field_name)
    if result is None:
        return None
    return result.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class UserRepository(BaseCRUD):
    """用户 仓库。

    管理用户账户与收款资料。余额字段不在这里修改：
    入账在活动仓库中完成，扣减在提现账本中完成。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_user(self, username: str, full_name: str,
                    role: str = "user",
                    session: Optional[Session] = None,
                    **fields) -> User:
        """注册用户。

        Args:
            username: 登录名（唯一）。
            full_name: 姓名。
            role: 角色（admin/support/user/test）。
            **fields: email、phone_number、payment_method 等可选字段。

        Returns:
            新建的 User 对象（余额为 0）。

        Raises:
            ValidationError: 角色或收款方式无效，或登录名已存在。
        """
        role_value = parse_role(role).value
        method = fields.get("payment_method", "usdt")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {method}")
        fields.pop("balance", None)

        def _do(sess):
            exists = sess.query(User).filter(User.username == username).first()
            if exists:
                raise ValidationError(f"Username already taken: {username}")
            return self.create(
                User, session=sess, username=username, full_name=full_name,
                role=role_value, balance=Decimal("0"), **fields
            )

        if session:
            return _do(session)

        with self._get_session() as sess:
            user = _do(sess)
            sess.commit()
            logger.info(f"Created user {user.id} ({username}, {role_value})")
            return user

    def get_by_username(self, username: str,
                        session: Optional[Session] = None) -> Optional[User]:
        def _query(sess):
            return sess.query(User).filter(User.username == username).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_payment_profile(self, user_id: int, payment_method: str,
                               **fields) -> User:
        """更新收款资料。

        usdt 方式要求 usdt_address；bank 方式要求银行名称、账号、路由号全部提供。

        Raises:
            NotFound: 用户不存在。
            ValidationError: 收款方式或必填字段缺失。
        """
        if payment_method == "usdt":
            if not fields.get("usdt_address"):
                raise ValidationError("USDT address is required")
            updates = {"usdt_address": fields["usdt_address"]}
        elif payment_method == "bank":
            required = ("bank_name", "bank_account_number", "bank_routing_number")
            if not all(fields.get(key) for key in required):
                raise ValidationError("All bank details are required")
            updates = {key: fields[key] for key in required}
        else:
            raise ValidationError(f"Unknown payment method: {payment_method}")

        user = self.update_by_id(
            User, user_id, payment_method=payment_method, **updates
        )
        if user is None:
            raise NotFound("User", user_id)
        return user

    def set_status(self, user_id: int, status: str) -> User:
        """修改账户状态（active / suspended / pending）。"""
        if status not in ("active", "suspended", "pending"):
            raise ValidationError(f"Unknown user status: {status}")
        user = self.update_by_id(User, user_id, status=status)
        if user is None:
            raise NotFound("User", user_id)
        return user

    def list_users(self, role: Optional[str] = None,
                   session: Optional[Session] = None) -> List[User]:
        filters = {"role": parse_role(role).value} if role else None
        return self.get_all(User, filters=filters, session=session)


class NumberRepository(BaseCRUD):
    """溢价号码 仓库。

    号码一旦产生活动记录就只能停用，不能物理删除（保证活动的引用完整性）。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_number(self, number_data: Dict[str, Any],
                      session: Optional[Session] = None) -> Number:
        """创建号码。

        Args:
            number_data: 号码数据字典，支持以下键：
                - value: 完整号码（必填，唯一）
                - country_code: 国家代码（必填）
                - channel_type: voice / sms / combined（必填）
                - service_type: 业务类别（必填）
                - name: 显示名称（可选，默认等于 value）
                - rate_per_minute / rate_per_sms: 费率（可选）
                - owner_id: 持有人（可选）
                - is_active / is_test: 布尔标记（可选）

        Returns:
            新建的 Number 对象。

        Raises:
            ValidationError: 必填字段缺失或通道类型无效。
        """
        for key in ("value", "country_code", "channel_type", "service_type"):
            if not number_data.get(key):
                raise ValidationError(f"{key} is required")
        channel_type = str(number_data["channel_type"]).lower()
        if channel_type not in CHANNEL_TYPES:
            raise ValidationError(f"Unknown channel type: {channel_type}")

        def _do(sess):
            if sess.query(Number).filter(
                Number.value == number_data["value"]
            ).first():
                raise ValidationError(
                    f"Number already exists: {number_data['value']}"
                )
            if number_data.get("owner_id") is not None:
                self.require(User, number_data["owner_id"], session=sess)
            return self.create(
                Number, session=sess,
                name=number_data.get("name") or number_data["value"],
                value=number_data["value"],
                country_code=str(number_data["country_code"]).upper(),
                channel_type=channel_type,
                service_type=number_data["service_type"],
                rate_per_minute=to_money(
                    number_data.get("rate_per_minute"), "rate_per_minute"
                ),
                rate_per_sms=to_money(
                    number_data.get("rate_per_sms"), "rate_per_sms"
                ),
                is_active=number_data.get("is_active", True),
                owner_id=number_data.get("owner_id"),
                is_test=number_data.get("is_test", False),
            )

        if session:
            return _do(session)

        with self._get_session() as sess:
            number = _do(sess)
            sess.commit()
            logger.info(f"Created number {number.id} ({number.value})")
            return number

    def get_by_value(self, value: str,
                     session: Optional[Session] = None) -> Optional[Number]:
        def _query(sess):
            return sess.query(Number).filter(Number.value == value).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_by_country(self, country_code: str,
                       session: Optional[Session] = None) -> List[Number]:
        return self.get_all(
            Number, filters={"country_code": country_code.upper()},
            session=session
        )

    def get_by_service_type(self, service_type: str,
                            session: Optional[Session] = None) -> List[Number]:
        return self.get_all(
            Number, filters={"service_type": service_type}, session=session
        )

    def get_owned_by(self, user_id: int,
                     session: Optional[Session] = None) -> List[Number]:
        return self.get_all(
            Number, filters={"owner_id": user_id}, session=session
        )

    def list_numbers(self, owner_id: Optional[int] = None,
                     session: Optional[Session] = None) -> List[Number]:
        """列出号码；owner_id 非空时只返回该用户名下号码。"""
        if owner_id is None:
            return self.get_all(Number, session=session)
        return self.get_owned_by(owner_id, session=session)

    def count_active(self, owner_id: Optional[int] = None,
                     session: Optional[Session] = None) -> int:
        filters: Dict[str, Any] = {"is_active": True}
        if owner_id is not None:
            filters["owner_id"] = owner_id
        return self.count(Number, filters=filters, session=session)

    def deactivate(self, number_id: int,
                   session: Optional[Session] = None) -> Number:
        """停用号码。

        Raises:
            NotFound: 号码不存在。
        """
        number = self.update_by_id(
            Number, number_id, session=session, is_active=False
        )
        if number is None:
            raise NotFound("Number", number_id)
        logger.info(f"Deactivated number {number_id}")
        return number

    def has_activity(self, number_id: int, session: Session) -> bool:
        calls = session.query(CallLog.id).filter(
            CallLog.number_id == number_id
        ).first()
        if calls:
            return True
        sms = session.query(SmsLog.id).filter(
            SmsLog.number_id == number_id
        ).first()
        return sms is not None

    def delete_number(self, number_id: int) -> None:
        """删除号码（仅限没有任何活动记录的号码）。

        Raises:
            NotFound: 号码不存在。
            ValidationError: 号码已有活动记录，应改为停用。
        """
        with self._get_session() as sess:
            number = self.require(Number, number_id, session=sess)
            if self.has_activity(number_id, sess):
                raise ValidationError(
                    f"Number {number_id} has activity; deactivate it instead"
                )
            sess.delete(number)
            sess.commit()
            logger.info(f"Deleted number {number_id}")


class ProviderRepository(BaseCRUD):
    """号码/短信服务商 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_provider(self, provider_data: Dict[str, Any]) -> Provider:
        """创建服务商记录。

        Raises:
            ValidationError: name / service_type / pricing_details 缺失。
        """
        for key in ("name", "service_type", "pricing_details"):
            if not provider_data.get(key):
                raise ValidationError(f"{key} is required")
        allowed = {c.name for c in Provider.__table__.columns} - {"id", "created_at"}
        fields = {k: v for k, v in provider_data.items() if k in allowed}
        return self.create(Provider, **fields)

    def get_active(self, session: Optional[Session] = None) -> List[Provider]:
        return self.get_all(Provider, filters={"is_active": True}, session=session)

    def supporting_country(self, country_code: str,
                           session: Optional[Session] = None) -> List[Provider]:
        """返回支持指定国家的启用服务商。"""
        code = country_code.strip().upper()
        return [
            p for p in self.get_active(session=session)
            if code in p.country_list
        ]

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Provider]:
        """按名称或描述搜索服务商。"""
        def _query(sess):
            return sess.query(Provider).filter(
                or_(
                    Provider.name.contains(keyword),
                    Provider.description.contains(keyword)
                )
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class IntegrationRepository(BaseCRUD):
    """第三方 API 集成 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_integration(self, name: str, provider: str,
                           integration_type: str,
                           **fields) -> ApiIntegration:
        """创建集成配置。

        Raises:
            ValidationError: integration_type 不是 smpp/http/api。
        """
        if integration_type not in INTEGRATION_TYPES:
            raise ValidationError(f"Unknown integration type: {integration_type}")
        return self.create(
            ApiIntegration, name=name, provider=provider,
            integration_type=integration_type, **fields
        )

    def mark_connected(self, integration_id: int) -> ApiIntegration:
        """记录一次成功连接。

        Raises:
            NotFound: 集成不存在。
        """
        integration = self.update_by_id(
            ApiIntegration, integration_id,
            status="active", last_connected=datetime.utcnow()
        )
        if integration is None:
            raise NotFound("ApiIntegration", integration_id)
        logger.info(f"Integration {integration_id} connected")
        return integration

    def get_active(self, session: Optional[Session] = None) -> List[ApiIntegration]:
        return self.get_all(
            ApiIntegration, filters={"is_active": True}, session=session
        )


class SettingRepository(BaseCRUD):
    """系统设置 仓库（键值对）。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._get_session() as sess:
            setting = sess.query(Setting).filter(Setting.key == key).first()
            return setting.value if setting else default

    def set_value(self, key: str, value: Optional[str],
                  category: str = "general",
                  description: Optional[str] = None) -> int:
        """保存或更新设置（幂等）。

        Returns:
            设置记录ID。
        """
        with self._get_session() as session:
            existing = session.query(Setting).filter(Setting.key == key).first()
            if existing:
                existing.value = value
                existing.updated_at = datetime.utcnow()
                if description is not None:
                    existing.description = description
                session.commit()
                return existing.id

            setting = Setting(
                key=key, value=value, category=category,
                description=description
            )
            session.add(setting)
            session.commit()
            session.refresh(setting)
            return setting.id

    def get_by_category(self, category: str) -> List[Setting]:
        return self.get_all(Setting, filters={"category": category})
