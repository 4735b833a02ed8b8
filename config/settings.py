"""全局配置管理

所有可配置项均通过 .env 文件或环境变量设置，运行时自动加载到此处。

使用方式：
    1. 复制 .env.example 为 .env 并按需修改
    2. 或直接设置同名环境变量（不区分大小写），如 DATABASE_URL
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/prn.db"

    # ========== Web 配置 ==========
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # ========== 报表 ==========
    recent_activity_limit: int = 10
    top_countries_limit: int = 5
    top_services_limit: int = 5
    high_performance_threshold: float = 3000
    medium_performance_threshold: float = 1000

    # ========== 查询客户端（重试/缓存） ==========
    query_stale_seconds: float = 60
    query_max_attempts: int = 3
    mutation_max_attempts: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
