"""
Allowlist-based resource accessor.

Maps an untrusted, client-supplied key to file content through a fixed
table built at startup. The key is only ever used as a dictionary key,
never as (part of) a filesystem path.
"""

import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import NewType, Optional

logger = logging.getLogger(__name__)

UntrustedKey = NewType('UntrustedKey', str)
TrustedPath = NewType('TrustedPath', Path)


class AllowlistError(ValueError):
    """Raised when the allowlist configuration is invalid"""


class ErrorKind(enum.Enum):
    NOT_ALLOWED = 'not_allowed'
    READ_FAILED = 'read_failed'


@dataclass(frozen=True)
class LookupResult:
    """Outcome of a single lookup: content on success, an error kind otherwise"""
    content: Optional[bytes] = None
    error: Optional[ErrorKind] = None

    def __post_init__(self):
        # Exactly one of content / error
        if (self.content is None) == (self.error is None):
            raise ValueError('LookupResult needs either content or an error, not both')

    @property
    def ok(self):
        return self.error is None

    @classmethod
    def success(cls, content):
        return cls(content=content)

    @classmethod
    def failure(cls, error):
        return cls(error=error)


class Allowlist:
    """Immutable mapping of permitted keys to trusted absolute paths"""

    def __init__(self, base_dir, entries=None):
        self._base_dir = base_dir
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def from_entries(cls, base_dir, entries):
        """
        Build an allowlist from trusted configuration.

        Relative values are taken relative to ``base_dir``. Every value is
        resolved (symlinks included) and must stay inside ``base_dir``.
        """
        base = Path(base_dir)
        if not base.is_absolute():
            raise AllowlistError(f'base_dir must be an absolute path: {base_dir}')
        base = base.resolve()

        resolved = {}
        for key, value in entries.items():
            if not isinstance(key, str) or not key:
                raise AllowlistError(f'Invalid allowlist key: {key!r}')
            if not isinstance(value, (str, Path)) or not str(value):
                raise AllowlistError(f'Invalid path for key {key!r}')

            try:
                target = (base / value).resolve()
                is_file = target.is_file()
            except (OSError, ValueError, RuntimeError) as e:
                raise AllowlistError(f'Invalid path for key {key!r}: {e}') from e

            if target == base or not target.is_relative_to(base):
                raise AllowlistError(f'Path for key {key!r} escapes {base}: {value}')
            if not is_file:
                logger.warning('Allowlisted file for key %r is not readable yet: %s', key, target)

            resolved[key] = TrustedPath(target)

        return cls(TrustedPath(base), resolved)

    @property
    def base_dir(self):
        return self._base_dir

    @property
    def entries(self):
        """Read-only view of ``{key: trusted path}``"""
        return self._entries

    def keys(self):
        return sorted(self._entries)

    def __contains__(self, key):
        return key in self._entries

    def __len__(self):
        return len(self._entries)

    def get(self, key) -> Optional[TrustedPath]:
        return self._entries.get(key)


def _reject_duplicate_keys(pairs):
    seen = {}
    for key, value in pairs:
        if key in seen:
            raise AllowlistError(f'Duplicate allowlist key: {key!r}')
        seen[key] = value
    return seen


def load_allowlist(config_file) -> Allowlist:
    """Load ``{"base_dir": ..., "files": {key: path}}`` from a JSON file"""
    config_path = Path(config_file)
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f, object_pairs_hook=_reject_duplicate_keys)
    except OSError as e:
        raise AllowlistError(f'Cannot read allowlist config {config_path}: {e}') from e
    except json.JSONDecodeError as e:
        raise AllowlistError(f'Invalid JSON in {config_path}: {e}') from e

    if not isinstance(config, dict):
        raise AllowlistError('Allowlist config must be a JSON object')

    base_dir = config.get('base_dir')
    files = config.get('files', {})
    if not isinstance(base_dir, str):
        raise AllowlistError("Allowlist config requires a 'base_dir' string")
    if not isinstance(files, dict):
        raise AllowlistError("'files' must be an object of {key: path}")

    allowlist = Allowlist.from_entries(base_dir, files)
    logger.info('Loaded %d allowlist entries from %s', len(allowlist), config_path)
    return allowlist


class ResourceAccessor:
    """Resolves untrusted keys to file content through an Allowlist"""

    def __init__(self, allowlist):
        self.allowlist = allowlist

    def resolve(self, key: UntrustedKey) -> LookupResult:
        if not isinstance(key, str) or key not in self.allowlist:
            return LookupResult.failure(ErrorKind.NOT_ALLOWED)

        path = self.allowlist.get(key)
        try:
            content = path.read_bytes()
        except OSError as e:
            logger.warning('Failed to read allowlisted file %s: %s', path, e)
            return LookupResult.failure(ErrorKind.READ_FAILED)

        return LookupResult.success(content)


def resolve(allowlist, key: UntrustedKey) -> LookupResult:
    return ResourceAccessor(allowlist).resolve(key)
