from .base import AsyncStrategy
from .hosted import HostedMcpStrategy
from .remote import RemoteMcpStrategy

__all__ = ["AsyncStrategy", "HostedMcpStrategy", "RemoteMcpStrategy"]
