"""
Engine registry.

An explicit technology -> Engine mapping built at startup and injected into
the controller. Technologies without a binding fail closed with
UnimplementedBackendError.
"""
from typing import Dict, Iterable, List, Optional

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings
from dboperator.engines.base import Engine
from dboperator.exceptions import UnimplementedBackendError
from dboperator.models.database import DatabaseEngine
from dboperator.platform.base import PlatformClient

logger = get_logger(__name__)


class EngineRegistry:
    """Maps a Database's technology to its Engine."""

    def __init__(self, engines: Optional[Iterable[Engine]] = None):
        self._engines: Dict[DatabaseEngine, Engine] = {}
        for engine in engines or ():
            self.register(engine)

    @classmethod
    def default(cls, platform: PlatformClient, settings: Optional[Settings] = None) -> "EngineRegistry":
        """Registry with every engine this controller ships."""
        from dboperator.engines.postgres import PostgresEngine

        return cls([PostgresEngine(platform, settings)])

    def register(self, engine: Engine) -> None:
        if engine.engine in self._engines:
            raise ValueError(f"engine already registered for {engine.engine.value}")
        self._engines[engine.engine] = engine
        logger.debug("engine_registered", engine=engine.engine.value)

    def resolve(self, technology: DatabaseEngine) -> Engine:
        """
        Return the engine bound to a technology.

        Raises:
            UnimplementedBackendError: No engine is bound to the technology
        """
        engine = self._engines.get(technology)
        if engine is None:
            raise UnimplementedBackendError(getattr(technology, "value", str(technology)))
        return engine

    def supported(self) -> List[DatabaseEngine]:
        return sorted(self._engines, key=lambda technology: technology.value)

    def __contains__(self, technology: DatabaseEngine) -> bool:
        return technology in self._engines
