"""Agent Relay：FastAPI 入口。

本模块负责：
- 应用启动与生命周期（lifespan）
- 各核心组件的初始化与注入（挂在 app.state.relay 上，路由通过依赖读取）
- 注册路由与中间件
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from agent_relay.api.routes_interaction import router as interaction_router
from agent_relay.api.routes_model import router as model_router
from agent_relay.api.routes_session import router as session_router
from agent_relay.catalog.resolver import ModelCatalog, build_fetchers
from agent_relay.config import RelaySettings, load_settings
from agent_relay.core.chat_runner import ChatTurnRunner
from agent_relay.core.router import InteractionRouter
from agent_relay.core.session_registry import SessionRegistry
from agent_relay.core.turn_logger import TurnLogger
from agent_relay.core.webhook_trigger import WebhookTrigger
from agent_relay.registry.agent_registry import AgentRegistry
from agent_relay.storage.session_archive import SessionArchive
from agent_relay.worker.adapters.base import ChatAdapter
from agent_relay.worker.runtime import WorkerRuntime, load_adapter
from agent_relay.workspace.scanner import WorkspaceScanner

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class AppState:
    """应用状态，持有所有核心组件的引用；路由通过 request.app.state.relay 访问。"""

    settings: RelaySettings
    agents: AgentRegistry
    sessions: SessionRegistry
    catalog: ModelCatalog
    worker_runtime: WorkerRuntime
    chat_runner: ChatTurnRunner
    router: InteractionRouter
    turn_logger: TurnLogger
    archive: SessionArchive | None = None


async def build_state(settings: RelaySettings, adapters: dict[str, ChatAdapter] | None = None) -> AppState:
    """按配置构造全部组件；归档开启时连接数据库，配置里的聊天后端在这里导入。"""
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    archive = None
    if settings.archive_enabled:
        archive = SessionArchive(db_path=settings.archive_path)
        await archive.initialize()

    agents = AgentRegistry(config_dir=settings.agents_dir)
    sessions = SessionRegistry(archive=archive, max_finished=settings.max_finished_sessions)
    catalog = ModelCatalog(
        fetchers=build_fetchers(settings.ollama_base_url, settings.gemini_api_key),
        ttl_seconds=settings.catalog_ttl_seconds,
    )
    worker_runtime = WorkerRuntime()
    for adapter_config in settings.adapters:
        worker_runtime.register_adapter(adapter_config.client, load_adapter(adapter_config))
    # 直接注入的实例优先于配置
    for client, adapter in (adapters or {}).items():
        worker_runtime.register_adapter(client, adapter)
    if not worker_runtime.adapters:
        logger.warning("No chat backends configured; channel messages will fail until adapters are set")
    turn_logger = TurnLogger(log_dir=settings.turn_log_dir)
    chat_runner = ChatTurnRunner(
        sessions=sessions,
        agents=agents,
        runtime=worker_runtime,
        turn_logger=turn_logger,
        timeout_seconds=settings.turn_timeout_seconds,
    )
    router = InteractionRouter(
        sessions=sessions,
        agents=agents,
        catalog=catalog,
        chat_runner=chat_runner,
        workspaces=WorkspaceScanner(root=settings.workspaces_root),
        webhooks=WebhookTrigger(settings.webhooks, base_url=settings.webhook_base_url),
        owner_id=settings.owner_id,
        default_agent=settings.default_agent,
    )
    return AppState(
        settings=settings,
        agents=agents,
        sessions=sessions,
        catalog=catalog,
        worker_runtime=worker_runtime,
        chat_runner=chat_runner,
        router=router,
        turn_logger=turn_logger,
        archive=archive,
    )


def create_app(
    settings: RelaySettings | None = None,
    adapters: dict[str, ChatAdapter] | None = None,
) -> FastAPI:
    """创建应用；settings 为空时从 config/relay.yaml 读取。adapters 为 client 名 -> 聊天后端。"""
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """启动时初始化所有组件，关闭时取消进行中的轮次并释放资源。"""
        logger.info("Starting Agent Relay...")
        state = await build_state(settings, adapters)
        app.state.relay = state
        logger.info(
            "Agent Relay started. %d agents loaded, %d chat backends.",
            len(state.agents.agents), len(state.worker_runtime.adapters),
        )

        yield

        logger.info("Shutting down Agent Relay...")
        state.chat_runner.cancel_all()
        await state.worker_runtime.shutdown()
        if state.archive:
            await state.archive.close()

    app = FastAPI(
        title="Agent Relay",
        description="Interactive command orchestration and message delivery for chat-platform agents",
        version=VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(interaction_router)
    app.include_router(session_router)
    app.include_router(model_router)

    @app.get("/")
    async def root():
        """根路径：返回应用名称、版本与运行状态。"""
        return {"name": "Agent Relay", "version": VERSION, "status": "running"}

    @app.get("/api/health")
    async def health(request: Request):
        """健康检查：已加载的 Agent 数、活跃会话数与各聊天后端状态。"""
        state: AppState | None = getattr(request.app.state, "relay", None)
        if state is None:
            return {"status": "starting"}
        return {
            "status": "ok",
            "agents_loaded": len(state.agents.agents),
            "active_sessions": len(state.sessions.active_keys()),
            "backends": await state.worker_runtime.health(),
        }

    return app


def main() -> None:
    """命令行入口：读取配置、设置日志并启动 uvicorn。

    聊天后端只来自配置文件的 adapters 列表；列表为空时服务照常启动，
    命令与向导可用，但频道消息会因没有后端而失败。
    """
    import uvicorn

    settings = load_settings()
    # 配置根日志格式，便于排查问题
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8100)


if __name__ == "__main__":
    main()
