"""通用 CRUD 基类。

所有仓库继承 BaseCRUD 获得通用的增删改查能力。每个方法都接受可选的
外部会话：传入时只 flush 不 commit，由调用方控制事务边界；不传时
方法自行开启会话并提交。
"""
from typing import Optional, List, Dict, Any, Type, TypeVar
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .errors import NotFound

ModelT = TypeVar("ModelT")


class BaseCRUD:
    """通用 CRUD 操作。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        """开启新会话（调用方负责用 with 关闭）。"""
        return self.conn.get_session()

    def create(self, model: Type[ModelT],
               session: Optional[Session] = None, **fields) -> ModelT:
        """创建一条记录。

        Args:
            model: ORM 模型类。
            session: 外部会话（可选）。
            **fields: 字段值。

        Returns:
            新创建的对象。
        """
        def _do(sess):
            obj = model(**fields)
            sess.add(obj)
            sess.flush()
            sess.refresh(obj)
            return obj

        if session:
            return _do(session)

        with self._get_session() as sess:
            obj = _do(sess)
            sess.commit()
            return obj

    def get_by_id(self, model: Type[ModelT], record_id: int,
                  session: Optional[Session] = None) -> Optional[ModelT]:
        """按主键获取记录，不存在返回 None。"""
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def require(self, model: Type[ModelT], record_id: int,
                session: Optional[Session] = None) -> ModelT:
        """按主键获取记录。

        Raises:
            NotFound: 记录不存在。
        """
        obj = self.get_by_id(model, record_id, session=session)
        if obj is None:
            raise NotFound(model.__name__, record_id)
        return obj

    def get_all(self, model: Type[ModelT],
                filters: Optional[Dict[str, Any]] = None,
                session: Optional[Session] = None) -> List[ModelT]:
        """获取全部记录，可按字段等值过滤，按主键升序。"""
        def _query(sess):
            query = sess.query(model)
            for key, value in (filters or {}).items():
                query = query.filter(getattr(model, key) == value)
            return query.order_by(model.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None,
                     **fields) -> Optional[ModelT]:
        """按主键更新字段。

        Returns:
            更新后的对象，记录不存在返回 None。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            sess.flush()
            sess.refresh(obj)
            return obj

        if session:
            return _do(session)

        with self._get_session() as sess:
            obj = _do(sess)
            if obj is not None:
                sess.commit()
            return obj

    def count(self, model: Type[ModelT],
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计记录数，可按字段等值过滤。"""
        def _query(sess):
            query = sess.query(model)
            for key, value in (filters or {}).items():
                query = query.filter(getattr(model, key) == value)
            return query.count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
