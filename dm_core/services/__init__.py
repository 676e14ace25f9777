from dm_core.services.dungeon_master import DM_SYSTEM_PROMPT, DMServiceConfig, DungeonMasterService, parse_dm_reply
from dm_core.services.fallback import FALLBACK_NARRATIVE, fallback_dm_response

__all__ = [
    "DM_SYSTEM_PROMPT",
    "DMServiceConfig",
    "DungeonMasterService",
    "FALLBACK_NARRATIVE",
    "fallback_dm_response",
    "parse_dm_reply",
]
