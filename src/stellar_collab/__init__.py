"""
Stellar Collab: multi-agent collaboration and coordination engine.

Turns shared goals into collaboration plans, resolves conflicts between
agents, coordinates dependent multi-agent tasks, broadcasts system
messages with acknowledgement tracking and runs bounded negotiations.

Version: 0.1.0
"""

__version__ = "0.1.0"
__description__ = "Multi-agent collaboration and coordination engine"

# Core imports for easy access
from stellar_collab.config.settings import EngineSettings, Settings, get_settings
from stellar_collab.core.logging import get_logger, setup_logging
from stellar_collab.orchestration.engine import CollaborationEngine

# Initialize logging on import
setup_logging()

__all__ = [
    "__version__",
    "__description__",
    "CollaborationEngine",
    "EngineSettings",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
