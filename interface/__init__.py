"""用户接口模块 —— 对外的 HTTP 管理接口。

使用示例：
    ```python
    from database import DatabaseManager
    from interface import create_app

    db = DatabaseManager()
    app = create_app(db)
    ```
"""
from interface.web import create_app

__all__ = ["create_app"]
