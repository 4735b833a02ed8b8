"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.users``、``db.numbers``、``db.payouts`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``record_call()``、``get_account_info()``），
   返回字典/基本类型，适合 HTTP 层直接序列化。
"""
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterator
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    UserRepository, NumberRepository, ProviderRepository,
    IntegrationRepository, SettingRepository
)
from .activity_repos import (
    CallLogRepository, SmsLogRepository,
    UserMessageRepository, NumberRequestRepository
)
from .payout_ledger import PayoutLedger
from .errors import NotFound
from .models import User, Number, Payout, NumberRequest, UserMessage, Provider


def _money(value) -> float:
    return float(value) if value is not None else 0.0


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def number_to_dict(n: Number) -> Dict[str, Any]:
    return {
        "id": n.id,
        "name": n.name,
        "value": n.value,
        "country_code": n.country_code,
        "channel_type": n.channel_type,
        "service_type": n.service_type,
        "rate_per_minute": (
            float(n.rate_per_minute) if n.rate_per_minute is not None else None
        ),
        "rate_per_sms": (
            float(n.rate_per_sms) if n.rate_per_sms is not None else None
        ),
        "is_active": n.is_active,
        "owner_id": n.owner_id,
        "is_test": n.is_test,
    }


def payout_to_dict(p: Payout) -> Dict[str, Any]:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "amount": _money(p.amount),
        "status": p.status,
        "payment_method": p.payment_method,
        "transaction_id": p.transaction_id,
        "notes": p.notes,
        "requested_at": _iso(p.requested_at),
        "processed_at": _iso(p.processed_at),
    }


def number_request_to_dict(r: NumberRequest) -> Dict[str, Any]:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "country": r.country,
        "service_type": r.service_type,
        "quantity": r.quantity,
        "status": r.status,
        "notes": r.notes,
        "assigned_numbers": list(r.assigned_numbers or []),
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }


def message_to_dict(m: UserMessage) -> Dict[str, Any]:
    return {
        "id": m.id,
        "number_id": m.number_id,
        "message": m.message,
        "sender_number": m.sender_number,
        "is_read": m.is_read,
        "status": m.status,
        "response_text": m.response_text,
        "responded_at": _iso(m.responded_at),
        "timestamp": _iso(m.timestamp),
    }


def provider_to_dict(p: Provider) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "service_type": p.service_type,
        "description": p.description,
        "pricing_details": p.pricing_details,
        "supported_countries": p.country_list,
        "website": p.website,
        "contact_email": p.contact_email,
        "contact_phone": p.contact_phone,
        "location": p.location,
        "is_active": p.is_active,
    }


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    组合了所有子仓库，提供统一的数据库访问接口。

    Attributes:
        conn: 数据库连接管理器。
        users: 用户仓库。
        numbers: 号码仓库。
        providers: 服务商仓库。
        integrations: API 集成仓库。
        app_settings: 系统设置仓库。
        calls: 通话记录仓库。
        sms: 短信记录仓库。
        messages: 用户留言（CDIR）仓库。
        number_requests: 号码申请仓库。
        payouts: 提现账本。

    Example::

        db = DatabaseManager("sqlite:///data/prn.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        number = db.numbers.get_by_value("+44 7700 900123")

        # 通过便捷方法访问（返回字典）
        info = db.get_account_info(user_id)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.users = UserRepository(self.conn)
        self.numbers = NumberRepository(self.conn)
        self.providers = ProviderRepository(self.conn)
        self.integrations = IntegrationRepository(self.conn)
        self.app_settings = SettingRepository(self.conn)

        # 活动与业务流程仓库
        self.calls = CallLogRepository(self.conn)
        self.sms = SmsLogRepository(self.conn)
        self.messages = UserMessageRepository(self.conn)
        self.number_requests = NumberRequestRepository(self.conn)

        # 提现账本
        self.payouts = PayoutLedger(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @contextmanager
    def snapshot(self) -> Iterator[Session]:
        """只读快照：同一事务内完成的所有读取看到一致的数据。

        SQLite 上事务以 BEGIN IMMEDIATE 开始（见 DatabaseConnection），
        快照期间其他写入会等待快照结束。
        """
        with self.conn.get_session() as session:
            with session.begin():
                yield session

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def execute_raw_sql(self, sql: str,
                        params: Optional[dict] = None) -> Any:
        """执行原始 SQL 语句（应优先使用 ORM 方法）。"""
        return self.conn.execute_raw_sql(sql, params)

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 便捷写入方法
    # ================================================================

    def record_call(self, call_data: Dict[str, Any]) -> int:
        """写入通话记录并入账，详见 CallLogRepository.record。

        Returns:
            通话记录 ID。
        """
        return self.calls.record(call_data).id

    def record_sms(self, sms_data: Dict[str, Any]) -> int:
        """写入短信记录并入账，详见 SmsLogRepository.record。

        Returns:
            短信记录 ID。
        """
        return self.sms.record(sms_data).id

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_account_info(self, user_id: int) -> Dict[str, Any]:
        """账户信息（含名下号码数与可用余额）。

        Raises:
            NotFound: 用户不存在。
        """
        with self.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User", user_id)
            return {
                "user_id": user.id,
                "username": user.username,
                "full_name": user.full_name,
                "role": user.role,
                "email": user.email,
                "phone_number": user.phone_number,
                "status": user.status,
                "payment_method": user.payment_method,
                "balance": _money(user.balance),
                "available_balance": _money(
                    self.payouts.available_balance(user_id, session=session)
                ),
                "assigned_numbers_count": len(
                    self.numbers.get_owned_by(user_id, session=session)
                ),
            }

    def get_number_list(self, owner_id: Optional[int] = None
                        ) -> List[Dict[str, Any]]:
        """号码列表；owner_id 非空时只返回该用户名下号码。"""
        return [
            number_to_dict(n)
            for n in self.numbers.list_numbers(owner_id=owner_id)
        ]

    def get_payout_history(self, user_id: Optional[int] = None,
                           status: Optional[str] = None
                           ) -> List[Dict[str, Any]]:
        return [
            payout_to_dict(p)
            for p in self.payouts.list_payouts(user_id=user_id, status=status)
        ]

    def get_number_requests(self, user_id: Optional[int] = None,
                            status: Optional[str] = None
                            ) -> List[Dict[str, Any]]:
        return [
            number_request_to_dict(r)
            for r in self.number_requests.list_requests(
                user_id=user_id, status=status
            )
        ]

    def get_cdir_history(self, user_id: Optional[int] = None,
                         status: Optional[str] = None
                         ) -> List[Dict[str, Any]]:
        """CDIR 留言历史，最新在前。"""
        return [
            message_to_dict(m)
            for m in self.messages.list_history(user_id=user_id, status=status)
        ]

    def get_provider_list(self, country: Optional[str] = None
                          ) -> List[Dict[str, Any]]:
        """启用服务商列表，可按支持国家过滤。"""
        if country:
            providers = self.providers.supporting_country(country)
        else:
            providers = self.providers.get_active()
        return [provider_to_dict(p) for p in providers]
