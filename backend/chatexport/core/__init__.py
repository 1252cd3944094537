"""Core module - backup parsing, hierarchy building and label derivation."""

from .hierarchy import BackupParseError, build_hierarchy, parse_backup
from .labels import derive_label

__all__ = ['BackupParseError', 'build_hierarchy', 'parse_backup', 'derive_label']
