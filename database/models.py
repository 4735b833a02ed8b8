"""SQLAlchemy ORM 模型定义。

本模块定义了所有数据库表的ORM模型，包括：
- 用户、号码等基础实体
- 通话记录、短信记录等活动事件（收入来源）
- 用户留言（CDIR）、号码申请、提现等带生命周期的业务记录
- 服务商、API 集成、系统设置等辅助数据

金额字段统一使用 Numeric（读取为 Decimal），保证汇总计算无浮点误差。
"""
from typing import Dict, Any, List, Optional
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    Numeric, ForeignKey, JSON, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解（Column 赋值 + 普通类型注解）
Base.__allow_unmapped__ = True

# 金额精度：收入按 4 位小数存储，余额/提现同精度
MONEY = Numeric(14, 4)


class User(Base):
    """用户表模型。

    存储平台用户（号码持有人、管理员等）的身份、角色与收款信息。

    Attributes:
        id: 主键，自增整数。
        username: 登录名，唯一。
        full_name: 姓名。
        role: 角色，可选值：admin / support / user / test。
        status: 账户状态：active / suspended / pending。
        payment_method: 收款方式：usdt / bank。
        usdt_address: USDT 钱包地址（payment_method=usdt 时必填）。
        bank_name / bank_account_number / bank_routing_number: 银行信息。
        balance: 待结算收入余额，只能由活动入账或提现完成时变动。

    Relationships:
        numbers: 名下号码列表。
        payouts: 提现记录列表。
        number_requests: 号码申请列表。
    """
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    username: str = Column(String(100), nullable=False, unique=True)
    full_name: str = Column(String(100), nullable=False)
    email: Optional[str] = Column(String(200))
    phone_number: Optional[str] = Column(String(50))
    role: str = Column(String(20), nullable=False, default="user")
    status: str = Column(String(20), default="active")
    payment_method: str = Column(String(20), default="usdt")
    usdt_address: Optional[str] = Column(String(200))
    bank_name: Optional[str] = Column(String(100))
    bank_account_number: Optional[str] = Column(String(100))
    bank_routing_number: Optional[str] = Column(String(100))
    balance: Decimal = Column(MONEY, nullable=False, default=0)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    numbers: List["Number"] = relationship("Number", back_populates="owner")
    payouts: List["Payout"] = relationship("Payout", back_populates="user")
    number_requests: List["NumberRequest"] = relationship(
        "NumberRequest", back_populates="user"
    )


class Number(Base):
    """溢价号码表模型。

    Attributes:
        id: 主键。
        name: 号码显示名称。
        value: 完整号码（含国家码，用于路由），唯一。
        country_code: 国家代码，如 UK / US。
        channel_type: 通道类型：voice / sms / combined。
        service_type: 业务类别，如 Support Hotline / Quiz Vote。
        rate_per_minute: 语音每分钟费率。
        rate_per_sms: 每条短信费率。
        is_active: 是否启用。产生过活动的号码只能停用，不能删除。
        owner_id: 持有人（可为空，表示未分配）。
        is_test: 是否为测试分配号码。
    """
    __tablename__ = "numbers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    value: str = Column(String(50), nullable=False, unique=True)
    country_code: str = Column(String(10), nullable=False)
    channel_type: str = Column(String(20), nullable=False)  # voice / sms / combined
    service_type: str = Column(String(100), nullable=False)
    rate_per_minute: Optional[Decimal] = Column(MONEY)
    rate_per_sms: Optional[Decimal] = Column(MONEY)
    is_active: bool = Column(Boolean, nullable=False, default=True)
    owner_id: Optional[int] = Column(Integer, ForeignKey("users.id"))
    is_test: bool = Column(Boolean, default=False)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    owner: Optional["User"] = relationship("User", back_populates="numbers")
    call_logs: List["CallLog"] = relationship("CallLog", back_populates="number")
    sms_logs: List["SmsLog"] = relationship("SmsLog", back_populates="number")


class CallLog(Base):
    """通话记录表模型（不可变活动事件）。

    country_code / service_type / channel_type / user_id 在事件发生时从号码复制，
    之后号码配置或归属变化不影响历史报表。revenue 写入后不再修改。
    """
    __tablename__ = "call_logs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    number_id: int = Column(Integer, ForeignKey("numbers.id"), nullable=False)
    number_value: str = Column(String(50), nullable=False)
    number_name: Optional[str] = Column(String(100))
    caller: Optional[str] = Column(String(50))
    recipient: Optional[str] = Column(String(50))
    call_id: Optional[str] = Column(String(100))
    duration: int = Column(Integer, nullable=False, default=0)  # 秒
    revenue: Decimal = Column(MONEY, nullable=False, default=0)
    status: str = Column(String(20), default="UNKNOWN")
    direction: str = Column(String(20), default="INBOUND")
    provider_name: Optional[str] = Column(String(100))
    recording: Optional[str] = Column(String(500))
    start_time: datetime = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_time: Optional[datetime] = Column(DateTime)
    country_code: str = Column(String(10), nullable=False)
    service_type: str = Column(String(100), nullable=False)
    channel_type: str = Column(String(20), nullable=False)
    user_id: Optional[int] = Column(Integer, ForeignKey("users.id"))

    # Relationships
    number: "Number" = relationship("Number", back_populates="call_logs")

    __table_args__ = (
        Index("ix_call_logs_start_time", "start_time"),
    )


class SmsLog(Base):
    """短信记录表模型（不可变活动事件）。

    message_length 为字符数，与通话的 duration（秒）单位不同。
    """
    __tablename__ = "sms_logs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    number_id: int = Column(Integer, ForeignKey("numbers.id"), nullable=False)
    number_value: str = Column(String(50), nullable=False)
    number_name: Optional[str] = Column(String(100))
    sender: Optional[str] = Column(String(50))
    recipient: Optional[str] = Column(String(50))
    message: Optional[str] = Column(Text)
    message_id: Optional[str] = Column(String(100))
    message_length: int = Column(Integer, nullable=False, default=0)
    revenue: Decimal = Column(MONEY, nullable=False, default=0)
    status: str = Column(String(20), default="UNKNOWN")
    direction: str = Column(String(20), default="INBOUND")
    provider_name: Optional[str] = Column(String(100))
    timestamp: datetime = Column(DateTime, nullable=False, default=datetime.utcnow)
    country_code: str = Column(String(10), nullable=False)
    service_type: str = Column(String(100), nullable=False)
    channel_type: str = Column(String(20), nullable=False)
    user_id: Optional[int] = Column(Integer, ForeignKey("users.id"))

    # Relationships
    number: "Number" = relationship("Number", back_populates="sms_logs")

    __table_args__ = (
        Index("ix_sms_logs_timestamp", "timestamp"),
    )


class UserMessage(Base):
    """用户留言表模型（CDIR 消息历史）。

    生命周期：pending → responded | archived。is_read 只能由 False 变为 True。
    """
    __tablename__ = "user_messages"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    number_id: int = Column(Integer, ForeignKey("numbers.id"), nullable=False)
    message: str = Column(Text, nullable=False)
    sender_number: Optional[str] = Column(String(50))
    is_read: bool = Column(Boolean, nullable=False, default=False)
    status: str = Column(String(20), nullable=False, default="pending")
    response_text: Optional[str] = Column(Text)
    responded_at: Optional[datetime] = Column(DateTime)
    timestamp: datetime = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    number: "Number" = relationship("Number")


class NumberRequest(Base):
    """号码申请表模型。

    生命周期：pending → approved → fulfilled，或 pending → rejected。
    assigned_numbers 存储交付的号码 ID 列表（JSON）。
    """
    __tablename__ = "number_requests"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)
    country: str = Column(String(10), nullable=False)
    service_type: str = Column(String(100), nullable=False)
    quantity: int = Column(Integer, nullable=False, default=1)
    status: str = Column(String(20), nullable=False, default="pending")
    notes: Optional[str] = Column(Text)
    assigned_numbers: List[int] = Column(JSON, default=list)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: Optional[datetime] = Column(DateTime)

    # Relationships
    user: "User" = relationship("User", back_populates="number_requests")


class Payout(Base):
    """提现记录表模型。

    生命周期：pending → processing → completed | failed，或 pending → rejected。
    只有进入 completed 时才扣减用户余额，并与状态变更处于同一事务。
    """
    __tablename__ = "payouts"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount: Decimal = Column(MONEY, nullable=False)
    status: str = Column(String(20), nullable=False, default="pending")
    payment_method: str = Column(String(20), nullable=False)
    transaction_id: Optional[str] = Column(String(200))
    notes: Optional[str] = Column(Text)
    requested_at: datetime = Column(DateTime, default=datetime.utcnow)
    processed_at: Optional[datetime] = Column(DateTime)

    # Relationships
    user: "User" = relationship("User", back_populates="payouts")


class Provider(Base):
    """号码/短信服务商表模型。

    与收入模型无关，仅作对接信息记录。supported_countries 为逗号分隔的国家代码。
    """
    __tablename__ = "providers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    service_type: str = Column(String(100), nullable=False)
    description: Optional[str] = Column(Text)
    pricing_details: str = Column(Text, nullable=False)
    supported_countries: Optional[str] = Column(Text)
    website: Optional[str] = Column(String(200))
    contact_email: Optional[str] = Column(String(200))
    contact_phone: Optional[str] = Column(String(50))
    location: Optional[str] = Column(String(100))
    notes: Optional[str] = Column(Text)
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    @property
    def country_list(self) -> List[str]:
        """解析后的支持国家列表（去空白、大写、去空项）。"""
        if not self.supported_countries:
            return []
        return [
            c.strip().upper()
            for c in self.supported_countries.split(",")
            if c.strip()
        ]


class ApiIntegration(Base):
    """第三方 API 集成表模型（smpp / http / api）。"""
    __tablename__ = "api_integrations"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    provider: str = Column(String(100), nullable=False)
    integration_type: str = Column(String(20), nullable=False)
    api_key: Optional[str] = Column(String(200))
    base_url: Optional[str] = Column(String(200))
    endpoint: Optional[str] = Column(String(200))
    config: Dict[str, Any] = Column(JSON, default=dict)
    status: str = Column(String(20), default="inactive")
    is_active: bool = Column(Boolean, nullable=False, default=True)
    last_connected: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class Setting(Base):
    """系统设置表模型（键值对）。"""
    __tablename__ = "settings"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    key: str = Column(String(100), nullable=False, unique=True)
    value: Optional[str] = Column(Text)
    category: str = Column(String(50), nullable=False)
    description: Optional[str] = Column(Text)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow)
