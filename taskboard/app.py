"""
Application root: builds the state containers once and hands them out by
reference. Nothing here is a module-level singleton.

Usage:
    app = TaskboardApp.from_config(Config.load())
    app.session.sign_in(user, token)
    await app.dashboard.load()
    ...
    await app.aclose()
"""
import logging
import sys
from typing import Optional

import httpx

from .api import ApiClient
from .boards import BoardCache
from .config import Config
from .dashboard import Dashboard
from .events import SyncEventBridge
from .reorder import ReorderEngine
from .session import Session
from .store import StateStore
from .tasks import TaskCache

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class TaskboardApp:
    """Owns the session, the caches and everything they share."""

    def __init__(
        self,
        config: Config,
        session: Optional[Session] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.session = session or Session()
        self.store = StateStore(config.state_db)
        self.events = SyncEventBridge()
        self.api = ApiClient(
            config.api_base_url,
            self.session,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.boards = BoardCache(self.api, self.store, self.events)
        self.tasks = TaskCache(self.api, self.events)
        self.reorder = ReorderEngine(self.tasks)
        self.dashboard = Dashboard(self.session, self.boards, self.tasks, self.reorder, self.events)

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "TaskboardApp":
        configure_logging(config.log_level)
        logger.info(f"Taskboard client for {config.api_base_url}")
        return cls(config, **kwargs)

    async def aclose(self) -> None:
        await self.api.aclose()
