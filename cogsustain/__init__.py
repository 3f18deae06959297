"""
CogSustain - agency-preserving AI chat.

Keeps the user thinking while the assistant helps: interaction cards,
comprehension checkpoints and a running measure of cognitive agency.
"""

from .agency_core import score
from .conversation import Conversation
from .extractor import TagStream, extract

try:
    from importlib.metadata import version

    __version__ = version("cogsustain")
except Exception:
    __version__ = "0.0.0"

__all__ = ["Conversation", "TagStream", "extract", "score"]
