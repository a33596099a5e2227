"""Upstream provider implementations.

Both variants share UpstreamProvider.dispatch(); FallbackController is
written once against that interface. To add a provider:

1. Create a new module in this package
2. Implement an UpstreamProvider subclass
3. Wire it into the chain in course_ai_proxy.llm.setup
"""

from course_ai_proxy.llm.providers.base import StreamHandle, UpstreamProvider
from course_ai_proxy.llm.providers.cloud import CloudProvider
from course_ai_proxy.llm.providers.local import LocalProvider

__all__ = [
    "CloudProvider",
    "LocalProvider",
    "StreamHandle",
    "UpstreamProvider",
]
