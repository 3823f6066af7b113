"""
Service wiring for the QnA bot

Builds the knowledge base, scorer, match engine, state storage, dialog
controller and bot adapter from settings, in dependency order.
"""

import logging
from dataclasses import dataclass
from app.config import Settings
from app.dialog import DialogController
from app.knowledge import KnowledgeBaseProvider
from app.loader import ConfigLoader, LoadedConfig
from app.memory import BaseStorage, create_storage
from app.retrieval import MatchEngine
from app.scoring import create_scorer
from app.transport import BotAdapter

logger = logging.getLogger(__name__)


@dataclass
class BotServices:
    """Everything a host needs to serve turns."""
    settings: Settings
    loader: ConfigLoader
    provider: KnowledgeBaseProvider
    engine: MatchEngine
    storage: BaseStorage
    controller: DialogController
    adapter: BotAdapter

    def reload_knowledge_base(self) -> LoadedConfig:
        """Re-read the knowledge base and apply its threshold to the controller."""
        loaded = self.loader.reload(self.provider)
        self.controller.min_confidence = loaded.min_confidence
        logger.info(f"Knowledge base reloaded from {loaded.source} (min_confidence={loaded.min_confidence})")
        return loaded


def build_services(settings: Settings) -> BotServices:
    """
    Wire the bot from settings.

    Args:
        settings: Application settings

    Returns:
        BotServices: Ready-to-use services

    Raises:
        ConfigError: If the knowledge base file cannot be read
        ValidationError: If the knowledge base is malformed
    """
    loader = ConfigLoader(settings)
    loaded = loader.load()
    provider = KnowledgeBaseProvider(loaded.knowledge_base)

    engine = MatchEngine(create_scorer(settings))
    storage = create_storage(settings)

    controller = DialogController(
        provider=provider,
        engine=engine,
        storage=storage,
        min_confidence=loaded.min_confidence,
        fallback_message=settings.fallback_message,
    )
    adapter = BotAdapter(
        controller,
        apology_message=settings.apology_message,
        include_error_detail=settings.include_error_detail,
        timeout_seconds=settings.turn_timeout_seconds,
    )

    logger.info(
        f"Bot services ready: {len(loaded.knowledge_base)} entries, "
        f"min_confidence={loaded.min_confidence}, storage={settings.storage_backend}"
    )
    return BotServices(
        settings=settings,
        loader=loader,
        provider=provider,
        engine=engine,
        storage=storage,
        controller=controller,
        adapter=adapter,
    )
