"""Models module."""

from .backup import LobeAgent, LobeSession, LobeTopic, LobeMessage, AgentSessionLink
from .tree import TopicGroup, SessionGroup, AgentGroup, BackupStats, ParsedBackup

__all__ = [
    'LobeAgent', 'LobeSession', 'LobeTopic', 'LobeMessage', 'AgentSessionLink',
    'TopicGroup', 'SessionGroup', 'AgentGroup', 'BackupStats', 'ParsedBackup',
]
