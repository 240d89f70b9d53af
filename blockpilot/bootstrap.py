"""Bootstrap context for blockpilot."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig
from .database import Database
from .engine import BlockPilotEngine
from .remote import RemoteTarget
from .services.browser import get_browser_manager
from .services.logging import configure_logging
from .services.runtime import PlaywrightRuntime
from .validation.ledger import ValidationLedger


@dataclass
class BlockPilotContext:
    config: AppConfig
    database: Database
    ledger: ValidationLedger
    engine: BlockPilotEngine


def playwright_factory(config: AppConfig) -> Callable[[], RemoteTarget]:
    def factory() -> RemoteTarget:
        return PlaywrightRuntime.open(config.runtime, get_browser_manager())

    return factory


def build_context(
    base_dir: Optional[Path] = None,
    *,
    target_factory: Optional[Callable[[], RemoteTarget]] = None,
    console_logging: bool = True,
) -> BlockPilotContext:
    config = AppConfig.load(base_dir)
    configure_logging(config.log_file_path, level=config.log_level, console=console_logging)
    database = Database(config.database_url)
    database.create_all()
    ledger = ValidationLedger(database)
    engine = BlockPilotEngine(config, ledger, target_factory or playwright_factory(config))
    return BlockPilotContext(config=config, database=database, ledger=ledger, engine=engine)
