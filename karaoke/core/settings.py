"""
karaoke.core.settings
~~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Karaoke Party Server", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3001, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    ALLOWED_ORIGINS: list[str] = Field(
        default_factory=list,
        description="prod 环境允许的 CORS 来源",
    )

    # ── 房间生命周期 ──────────────────────────────────────────────────
    ROOM_IDLE_TIMEOUT_SECONDS: float = Field(
        default=3600.0,
        description="无连接且无活动超过该时长的房间会被清理",
    )
    ROOM_SWEEP_INTERVAL_SECONDS: float = Field(
        default=300.0,
        description="空闲房间清理任务的执行间隔",
    )

    # ── 语音在线状态 ──────────────────────────────────────────────────
    VOICE_JOIN_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="等待语音频道连接就绪的最长时间",
    )

    # ── HTTP 接口 ─────────────────────────────────────────────────────
    HTTP_RATE_LIMIT: str = Field(
        default="10/second",
        description="HTTP 接口按客户端 IP 的限流规则（slowapi 语法）",
    )
    SEARCH_RESULT_LIMIT: int = Field(default=10, description="歌曲搜索最大返回条数")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def debug(self) -> bool:
        """FastAPI debug 模式与 uvicorn 热重载只在 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """实际使用的日志级别。

        显式设置的 ``LOG_LEVEL`` 环境变量优先；否则 test 环境用 DEBUG
        （方便排查房间事件顺序），prod 用 WARNING，其余用 INFO。
        """
        explicit = os.getenv("LOG_LEVEL")
        if explicit:
            return explicit.upper()
        if self.is_test:
            return "DEBUG"
        return "WARNING" if self.is_prod else "INFO"

    @property
    def allow_cors_all_origins(self) -> bool:
        """非 prod 环境放开 CORS，局域网内的手机可以直接访问。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """返回进程内唯一的 Settings 实例。"""
    return Settings()


settings: Settings = get_settings()
