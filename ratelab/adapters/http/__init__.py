"""HTTP adapter layer used to reach tested targets."""

from ratelab.adapters.http.base import AbstractTargetClient, TargetResponse
from ratelab.adapters.http.factory import create_target_client
from ratelab.adapters.http.httpx_client import HttpxTargetClient

__all__ = [
    "AbstractTargetClient",
    "HttpxTargetClient",
    "TargetResponse",
    "create_target_client",
]
