#!/usr/bin/env python3
"""PRN 管理后台 - Web 应用入口

启动 HTTP 管理接口（仪表盘、收入报表、号码、提现、CDIR 留言）。

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/prn.db

    # 启动前写入示例数据
    python app.py --seed

环境变量（在 .env 文件中配置，参考 .env.example）：
    DATABASE_URL      数据库连接地址
    WEB_HOST          监听地址（默认 0.0.0.0）
    WEB_PORT          Web 端口（默认 8080）
"""
import argparse

import uvicorn
from loguru import logger

from config.settings import settings


def main():
    parser = argparse.ArgumentParser(description="PRN 管理后台 Web 应用")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=None,
                        help="数据库连接 URL")
    parser.add_argument("--seed", action="store_true",
                        help="启动前写入示例数据")
    args = parser.parse_args()

    from database import DatabaseManager
    from interface import create_app

    db = DatabaseManager(args.db)
    try:
        db.create_tables()
        logger.info(f"数据库已连接: {db.database_url}")

        if args.seed:
            from config.seed_data import seed_config
            from scripts.init_db import seed_database
            seed_database(db, seed_config)

        app = create_app(db)
        logger.info(f"PRN 管理后台启动: http://{args.host}:{args.port}")
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    finally:
        db.close()
        logger.info("服务已停止")


if __name__ == "__main__":
    main()
