"""PRN 管理后台 HTTP API。

在记录存储、汇总引擎和提现账本之上提供一层薄的 FastAPI 接口。
调用者身份来自 ``X-User-Id`` 请求头，解析为 Caller 后由各端点按权限处理；
领域异常统一映射为 HTTP 状态码。

路由：
- GET  /health                               → 健康检查
- GET  /api/dashboard                        → 仪表盘汇总
- GET  /api/activity                         → 合并后的通话/短信活动流
- GET  /api/reports/revenue                  → 收入报表
- GET  /api/reports/payments                 → 提现报表
- GET  /api/numbers, POST /api/numbers       → 号码列表 / 创建号码
- POST /api/numbers/{id}/deactivate          → 停用号码
- GET  /api/number-requests, POST ...        → 号码申请
- POST /api/number-requests/{id}/advance     → 推进号码申请
- GET  /api/payouts, POST /api/payouts       → 提现历史 / 发起提现
- POST /api/payouts/{id}/advance             → 推进提现
- GET  /api/messages                         → CDIR 留言
- POST /api/messages/{id}/respond|archive|read
- GET  /api/providers                        → 服务商列表
"""
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from database import DatabaseManager
from database.errors import (
    InconsistentAggregate, InsufficientBalance, InvalidTransition,
    NotFound, PermissionDenied, PRNError, ValidationError
)
from database.manager import (
    message_to_dict, number_request_to_dict, number_to_dict, payout_to_dict
)
from database.models import Number, User, UserMessage
from database.permissions import Caller, Capability, parse_role
from reporting import AggregationEngine, Granularity, ReportFilter, activity_to_dict

from .schemas import (
    MessageReply, NumberCreate, NumberRequestCreate, PayoutCreate, StatusChange
)

ERROR_STATUS = (
    (NotFound, 404),
    (PermissionDenied, 403),
    (InvalidTransition, 409),
    (InsufficientBalance, 409),
    (ValidationError, 400),
    (InconsistentAggregate, 500),
)


def _status_for(exc: PRNError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(db: DatabaseManager,
               engine: Optional[AggregationEngine] = None) -> FastAPI:
    """创建 FastAPI 应用。

    Args:
        db: 数据库管理器。
        engine: 汇总引擎（可选，默认基于 db 创建）。
    """
    engine = engine or AggregationEngine(db)

    app = FastAPI(
        title="PRN 管理后台",
        description="溢价号码收入、活动与提现管理",
        version="1.0.0",
    )
    app.state.db = db
    app.state.engine = engine

    # ==================== 错误映射 ====================

    @app.exception_handler(PRNError)
    async def handle_domain_error(request: Request, exc: PRNError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"error": {"type": type(exc).__name__, "message": str(exc)}},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": {"type": "InternalError", "message": "Internal server error"}},
        )

    # ==================== 身份 ====================

    def get_caller(x_user_id: Optional[str] = Header(default=None)) -> Caller:
        """从 X-User-Id 请求头解析调用者。"""
        if not x_user_id or not x_user_id.isdigit():
            raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id")
        user = db.users.get_by_id(User, int(x_user_id))
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return Caller(user.id, parse_role(user.role))

    def report_filter(request: Request, caller: Caller) -> ReportFilter:
        return ReportFilter.parse(dict(request.query_params)).scoped(
            caller.scope_user_id
        )

    def require_message(caller: Caller, message_id: int) -> None:
        """留言只对号码持有人和可查看全部数据的角色可见。"""
        message = db.messages.require(UserMessage, message_id)
        scope = caller.scope_user_id
        if scope is None:
            return
        number = db.numbers.get_by_id(Number, message.number_id)
        if number is None or number.owner_id != scope:
            raise NotFound("UserMessage", message_id)

    # ==================== 基础 ====================

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # ==================== 报表 ====================

    @app.get("/api/dashboard")
    def dashboard(request: Request, caller: Caller = Depends(get_caller)):
        """仪表盘汇总；提供 dateFrom/dateTo 时只统计该窗口。"""
        flt = None
        if "dateFrom" in request.query_params or "date_from" in request.query_params:
            flt = report_filter(request, caller)
        return engine.dashboard(user_id=caller.scope_user_id, flt=flt).to_dict()

    @app.get("/api/activity")
    def activity(request: Request,
                 limit: int = Query(default=50, ge=1, le=1000),
                 offset: int = Query(default=0, ge=0),
                 caller: Caller = Depends(get_caller)):
        flt = None
        if "dateFrom" in request.query_params or "date_from" in request.query_params:
            flt = report_filter(request, caller)
        items = engine.activities(
            flt, user_id=caller.scope_user_id, limit=limit, offset=offset
        )
        return [activity_to_dict(a) for a in items]

    @app.get("/api/reports/revenue")
    def revenue_report(request: Request,
                       granularity: str = Query(default="day"),
                       caller: Caller = Depends(get_caller)):
        caller.require(Capability.VIEW_REVENUE_REPORTS)
        flt = report_filter(request, caller)
        return engine.revenue_report(flt, Granularity.parse(granularity)).to_dict()

    @app.get("/api/reports/payments")
    def payment_report(caller: Caller = Depends(get_caller)):
        caller.require(Capability.VIEW_ALL_DATA)
        return engine.payment_report()

    # ==================== 号码 ====================

    @app.get("/api/numbers")
    def list_numbers(caller: Caller = Depends(get_caller)):
        return db.get_number_list(owner_id=caller.scope_user_id)

    @app.post("/api/numbers", status_code=201)
    def create_number(data: NumberCreate, caller: Caller = Depends(get_caller)):
        caller.require(Capability.MANAGE_NUMBERS)
        number = db.numbers.create_number(data.model_dump(exclude_none=True))
        return number_to_dict(number)

    @app.post("/api/numbers/{number_id}/deactivate")
    def deactivate_number(number_id: int, caller: Caller = Depends(get_caller)):
        caller.require(Capability.MANAGE_NUMBERS)
        return number_to_dict(db.numbers.deactivate(number_id))

    # ==================== 号码申请 ====================

    @app.get("/api/number-requests")
    def list_number_requests(status: Optional[str] = None,
                             caller: Caller = Depends(get_caller)):
        return db.get_number_requests(user_id=caller.scope_user_id, status=status)

    @app.post("/api/number-requests", status_code=201)
    def create_number_request(data: NumberRequestCreate,
                              caller: Caller = Depends(get_caller)):
        caller.require(Capability.REQUEST_NUMBERS)
        request = db.number_requests.create_request(
            caller.user_id, data.country, data.service_type,
            quantity=data.quantity, notes=data.notes
        )
        return number_request_to_dict(request)

    @app.post("/api/number-requests/{request_id}/advance")
    def advance_number_request(request_id: int, data: StatusChange,
                               caller: Caller = Depends(get_caller)):
        request = db.number_requests.advance(
            request_id, data.status, actor=caller,
            assigned_number_ids=data.assigned_number_ids, notes=data.notes
        )
        return number_request_to_dict(request)

    # ==================== 提现 ====================

    @app.get("/api/payouts")
    def list_payouts(status: Optional[str] = None,
                     caller: Caller = Depends(get_caller)):
        return db.get_payout_history(user_id=caller.scope_user_id, status=status)

    @app.post("/api/payouts", status_code=201)
    def request_payout(data: PayoutCreate, caller: Caller = Depends(get_caller)):
        caller.require(Capability.REQUEST_PAYOUTS)
        payout = db.payouts.request_payout(
            caller.user_id, data.amount,
            method=data.payment_method, notes=data.notes
        )
        return payout_to_dict(payout)

    @app.post("/api/payouts/{payout_id}/advance")
    def advance_payout(payout_id: int, data: StatusChange,
                       caller: Caller = Depends(get_caller)):
        payout = db.payouts.advance(
            payout_id, data.status, actor=caller,
            transaction_id=data.transaction_id, notes=data.notes
        )
        return payout_to_dict(payout)

    # ==================== CDIR 留言 ====================

    @app.get("/api/messages")
    def list_messages(status: Optional[str] = None,
                      caller: Caller = Depends(get_caller)):
        return db.get_cdir_history(user_id=caller.scope_user_id, status=status)

    @app.post("/api/messages/{message_id}/respond")
    def respond_message(message_id: int, data: MessageReply,
                        caller: Caller = Depends(get_caller)):
        require_message(caller, message_id)
        return message_to_dict(db.messages.respond(message_id, data.response_text))

    @app.post("/api/messages/{message_id}/archive")
    def archive_message(message_id: int, caller: Caller = Depends(get_caller)):
        require_message(caller, message_id)
        return message_to_dict(db.messages.archive(message_id))

    @app.post("/api/messages/{message_id}/read")
    def read_message(message_id: int, caller: Caller = Depends(get_caller)):
        require_message(caller, message_id)
        return message_to_dict(db.messages.mark_read(message_id))

    # ==================== 服务商 ====================

    @app.get("/api/providers")
    def list_providers(country: Optional[str] = None,
                       caller: Caller = Depends(get_caller)):
        return db.get_provider_list(country=country)

    return app
