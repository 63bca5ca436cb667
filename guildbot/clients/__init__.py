"""
Upstream game-data clients and their cached facades.
"""

from .base import UpstreamAPIError
from .cached import CachedComlinkClient, CachedMhanndalorianClient, GameDataSource
from .comlink import ComlinkClient
from .mhanndalorian import MhanndalorianClient, create_mhanndalorian_client

__all__ = [
    "UpstreamAPIError",
    "ComlinkClient",
    "MhanndalorianClient",
    "create_mhanndalorian_client",
    "CachedComlinkClient",
    "CachedMhanndalorianClient",
    "GameDataSource",
]
