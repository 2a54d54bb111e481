from .base import (
    FinalMessage,
    ProviderClient,
    ProviderResult,
    StreamAssembler,
    StreamEnd,
    TextDelta,
    ToolCallDelta,
    ToolInvocationRequest,
)
from .toolchain import Toolchain

__all__ = [
    "FinalMessage",
    "ProviderClient",
    "ProviderResult",
    "StreamAssembler",
    "StreamEnd",
    "TextDelta",
    "ToolCallDelta",
    "ToolInvocationRequest",
    "Toolchain",
]
