"""Encrypted credential storage with transparent refresh.

One JSON file per owner identity holds a :class:`CredentialRecord` whose
token fields are sealed with :class:`SecretCodec`. The store provides:
- Atomic replacement (temp file + ``os.replace``), so readers never see a
  partially written record
- An in-process lock plus an OS file lock serializing save/refresh
- Restrictive permissions (0700 directory, 0600 files)
- Refresh through the grant-flow authenticator that never damages a
  working record when the exchange fails
"""

import json
import logging
import os
import re
import stat
import sys
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Generator

from .codec import SecretCodec
from .errors import AuthError, DecryptFailure
from .tokens import CredentialRecord, TokenGrant

if TYPE_CHECKING:
    from .grant import GrantFlowAuthenticator

logger = logging.getLogger(__name__)

# File locking support
if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Unix implementation using fcntl).

        Args:
            filepath: Path to the file to lock
            exclusive: If True, acquire exclusive lock; otherwise shared lock
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Windows implementation using msvcrt).

        msvcrt has no shared locks, so readers take the exclusive lock too.
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


# Default storage location
DEFAULT_STORE_DIR = Path.home() / ".cache" / "xibo-auth" / "tokens"

# Treat tokens as expired this long before the backend would
DEFAULT_EXPIRY_MARGIN = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_identity(owner_identity: str) -> str:
    """Map an owner identity to a safe file stem."""
    stem = re.sub(r"[^a-z0-9_.@-]", "_", owner_identity.strip().lower())
    return stem.lstrip(".") or "_"


class CredentialStore:
    """Persistent, encrypted store of one credential record per identity.

    Usage:
        store = CredentialStore(SecretCodec(passphrase), authenticator=grant)
        store.save(store.seal("alice", "https://cms.example.com", grant))
        token = store.get_valid_access_token()
    """

    def __init__(
        self,
        codec: SecretCodec,
        store_dir: Path | None = None,
        owner_identity: str | None = None,
        authenticator: "GrantFlowAuthenticator | None" = None,
        margin_seconds: int = DEFAULT_EXPIRY_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the store.

        Args:
            codec: Codec used to seal and open token fields
            store_dir: Directory holding record files
            owner_identity: Identity whose record is active
            authenticator: Grant-flow authenticator used by refresh()
            margin_seconds: Expiry safety margin
            clock: Wall-clock source returning aware UTC datetimes
        """
        self.codec = codec
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self.owner_identity = owner_identity
        self.authenticator = authenticator
        self.margin_seconds = margin_seconds
        self._clock = clock
        self._lock = threading.RLock()

        self._init_storage()

    def _init_storage(self) -> None:
        """Initialize storage directory with secure permissions."""
        self.store_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _record_path(self, owner_identity: str) -> Path:
        return self.store_dir / f"{_normalize_identity(owner_identity)}.json"

    def _resolve_owner(self, owner_identity: str | None) -> str | None:
        return owner_identity or self.owner_identity

    # Record persistence

    def load(self, owner_identity: str | None = None) -> CredentialRecord | None:
        """Load the record for an identity.

        Args:
            owner_identity: Identity to load; defaults to the active identity

        Returns:
            The record, or None if it does not exist or cannot be parsed
        """
        owner = self._resolve_owner(owner_identity)
        if owner is None:
            return None

        path = self._record_path(owner)
        if not path.is_file():
            return None

        try:
            with _file_lock(path, exclusive=False):
                data = json.loads(path.read_text(encoding="utf-8"))
            return CredentialRecord.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, DecryptFailure) as e:
            logger.warning(f"Ignoring unreadable credential record for {owner}: {e}")
            return None
        except OSError as e:
            logger.warning(f"Could not read credential record for {owner}: {e}")
            return None

    def save(self, record: CredentialRecord) -> None:
        """Persist a record atomically, replacing any previous one.

        The new content is written to a temporary file in the same
        directory, fsynced, then renamed over the old file. The record's
        owner becomes the active identity.

        Raises:
            OSError: If the file cannot be written
        """
        path = self._record_path(record.owner_identity)
        text = json.dumps(record.to_dict(), indent=2) + "\n"

        with self._lock, _file_lock(path, exclusive=True):
            fd = None
            tmp_path: str | None = None
            try:
                fd = tempfile.NamedTemporaryFile(
                    mode="w",
                    dir=self.store_dir,
                    prefix=f".{path.name}.",
                    suffix=".tmp",
                    delete=False,
                    encoding="utf-8",
                )
                tmp_path = fd.name
                os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
                fd.write(text)
                fd.flush()
                os.fsync(fd.fileno())
                fd.close()
                fd = None
                os.replace(tmp_path, path)
            except BaseException:
                if fd is not None:
                    fd.close()
                if tmp_path is not None:
                    try:
                        os.unlink(tmp_path)
                    except OSError:
                        pass
                raise

            self.owner_identity = record.owner_identity

        logger.debug(f"Stored credential record for {record.owner_identity}")

    def seal(self, owner_identity: str, backend_url: str, grant: TokenGrant) -> CredentialRecord:
        """Build a new record from a successful grant.

        Args:
            owner_identity: Identity the tokens belong to
            backend_url: CMS base URL
            grant: Tokens to seal

        Returns:
            A record whose token fields are encrypted
        """
        return CredentialRecord(
            access_token=self.codec.encrypt(grant.access_token),
            refresh_token=self.codec.encrypt(grant.refresh_token) if grant.refresh_token else None,
            expires_at=grant.expires_at,
            owner_identity=owner_identity,
            backend_url=backend_url,
            created_at=self._clock(),
        )

    # Expiry and tokens

    def is_expired(self, record: CredentialRecord, margin_seconds: int | None = None) -> bool:
        """Check if a record's access token is expired or nearly expired.

        Args:
            record: Record to check
            margin_seconds: Safety margin; defaults to the store's margin

        Returns:
            True if the token expires within the margin, or has no expiry
        """
        if record.expires_at is None:
            return True

        margin = self.margin_seconds if margin_seconds is None else margin_seconds
        expires_at = record.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return self._clock() >= expires_at - timedelta(seconds=margin)

    def get_valid_access_token(self) -> str | None:
        """Get a usable access token for the active identity.

        Decrypts the stored token if it is outside the expiry margin,
        otherwise attempts a refresh.

        Returns:
            The access token, or None if none is available
        """
        with self._lock:
            record = self.load()
            if record is None:
                return None

            if not self.is_expired(record):
                try:
                    return self.codec.decrypt(record.access_token)
                except DecryptFailure as e:
                    logger.warning(f"Stored access token for {record.owner_identity} unusable: {e}")
                    return None

            logger.info(f"Access token for {record.owner_identity} is expired or near expiry, refreshing")
            return self.refresh()

    def refresh(self) -> str | None:
        """Exchange the stored refresh token for a new access token.

        On any failure the existing record is left exactly as it was.

        Returns:
            The new access token, or None if refresh was not possible
        """
        with self._lock:
            record = self.load()
            if record is None:
                logger.debug("No credential record to refresh")
                return None

            if record.refresh_token is None:
                logger.info(
                    f"No refresh token stored for {record.owner_identity}. "
                    f"User must re-authenticate."
                )
                return None

            if self.authenticator is None:
                logger.debug("No authenticator configured for refresh")
                return None

            try:
                refresh_value = self.codec.decrypt(record.refresh_token)
            except DecryptFailure as e:
                logger.warning(f"Stored refresh token for {record.owner_identity} unusable: {e}")
                return None

            try:
                grant = self.authenticator.refresh(refresh_value)
            except AuthError as e:
                logger.warning(f"Token refresh failed for {record.owner_identity}: {e}")
                return None

            updated = record.with_tokens(
                access_token=self.codec.encrypt(grant.access_token),
                refresh_token=self.codec.encrypt(grant.refresh_token) if grant.refresh_token else None,
                expires_at=grant.expires_at,
            )
            try:
                self.save(updated)
            except OSError as e:
                logger.warning(f"Could not store refreshed tokens for {record.owner_identity}: {e}")
                return None
            logger.info(f"Token refreshed for {record.owner_identity}")
            return grant.access_token

    def logout(self, owner_identity: str | None = None) -> bool:
        """Securely delete the record for an identity.

        The file content is overwritten before it is unlinked.

        Returns:
            True if a record was deleted, False if none existed
        """
        owner = self._resolve_owner(owner_identity)
        if owner is None:
            return False

        path = self._record_path(owner)
        with self._lock, _file_lock(path, exclusive=True):
            if not path.is_file():
                return False

            try:
                size = path.stat().st_size
                with open(path, "r+b") as f:
                    f.write(os.urandom(size))
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                logger.warning(f"Could not overwrite credential record before delete: {e}")

            path.unlink()

        # The lock file stays: other processes may already be waiting on it
        logger.info(f"Deleted credential record for {owner}")
        return True

    # Utility methods

    def list_identities(self) -> list[str]:
        """List identities with a stored record."""
        identities: list[str] = []
        for path in sorted(self.store_dir.glob("*.json")):
            try:
                data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
                identities.append(data["username"])
            except (OSError, json.JSONDecodeError, KeyError, TypeError):
                logger.debug(f"Skipping unreadable record file {path.name}")
        return identities

    def latest_identity(self) -> str | None:
        """Identity of the most recently created readable record, if any."""
        latest: CredentialRecord | None = None
        for identity in self.list_identities():
            record = self.load(identity)
            if record is None:
                continue
            if latest is None or record.created_at > latest.created_at:
                latest = record
        return latest.owner_identity if latest else None

    def get_record_info(self, owner_identity: str | None = None) -> dict[str, Any] | None:
        """Get non-sensitive record metadata for display.

        Returns:
            Dictionary with record metadata (no secrets), or None
        """
        record = self.load(owner_identity)
        if record is None:
            return None

        return {
            "owner_identity": record.owner_identity,
            "backend_url": record.backend_url,
            "has_refresh_token": record.has_refresh_token(),
            "created_at": record.created_at.isoformat(),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            "is_expired": self.is_expired(record),
        }
