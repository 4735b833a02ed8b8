"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from typing import Optional

from database import DatabaseManager
from config.seed_data import SeedConfig, seed_config
from loguru import logger


def seed_database(db: DatabaseManager, config: SeedConfig) -> None:
    """插入种子数据（已存在的用户/号码跳过，可重复执行）"""
    for user_data in config.get_users():
        data = dict(user_data)
        username = data.pop("username")
        if db.users.get_by_username(username):
            continue
        full_name = data.pop("full_name")
        role = data.pop("role", "user")
        db.users.create_user(username, full_name, role=role, **data)
        logger.info(f"Created user: {username}")

    for number_data in config.get_numbers():
        data = dict(number_data)
        if db.numbers.get_by_value(data["value"]):
            continue
        owner = data.pop("owner", None)
        if owner:
            user = db.users.get_by_username(owner)
            data["owner_id"] = user.id if user else None
        db.numbers.create_number(data)
        logger.info(f"Created number: {data['value']}")

    if not db.providers.get_active():
        for provider_data in config.get_providers():
            db.providers.create_provider(provider_data)
            logger.info(f"Created provider: {provider_data['name']}")

    for setting in config.get_settings():
        db.app_settings.set_value(
            setting["key"], setting.get("value"),
            category=setting.get("category", "general"),
            description=setting.get("description")
        )


def init_database(database_url: Optional[str] = None) -> DatabaseManager:
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    # 创建数据库管理器
    db = DatabaseManager(database_url)

    # 创建所有表
    logger.info("Creating tables...")
    db.create_tables()

    # 插入种子数据
    logger.info("Inserting seed data...")
    seed_database(db, seed_config)

    logger.info("Database initialization completed!")
    return db


if __name__ == "__main__":
    init_database().close()
