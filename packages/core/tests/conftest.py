"""packages/core 测试配置 -- 核心层 fixture"""

from pathlib import Path

import pytest_asyncio


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径（与 store_group 使用的数据库相互独立）"""
    return tmp_path / "core_test.db"
