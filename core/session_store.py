"""
Session Store - Persists login credentials and the watched room set across restarts.

Three backends, selected once at startup from a SessionBackend value:

- EphemeralSessionStore: stores nothing.
- FileSessionStore: one AES-256-GCM encrypted JSON blob keyed by a
  PBKDF2-derived passphrase key, plus a plain JSON sidecar for rooms.
- KeyringSessionStore: the credential as one JSON secret in the OS secret store,
  written in a single call so it is never half-updated.
"""

import base64
import json
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from utils.exceptions import ConfigurationError, PersistenceError, SessionCorrupt, SessionNotFound
from models.credential import (
    Credential,
    EphemeralBackend,
    FileBackend,
    SecretStoreBackend,
    SessionBackend,
)

BLOB_VERSION = 1
KDF_ITERATIONS = 390000
SESSION_FILE = 'session.json'
ROOMS_FILE = 'rooms.json'


class SessionStore(ABC):
    """Common contract of all session backends."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def exists(self) -> bool:
        """True if a stored session is present."""
        pass

    @abstractmethod
    def restore(self) -> Credential:
        """
        Load the stored credential.

        Raises:
            SessionNotFound: nothing stored
            SessionCorrupt: stored data cannot be decoded
        """
        pass

    @abstractmethod
    def persist(self, credential: Credential) -> None:
        """Store a credential, replacing any previous one. Raises PersistenceError."""
        pass

    @abstractmethod
    def wipe(self) -> None:
        """Remove every stored field, including the room set."""
        pass

    @abstractmethod
    def persist_rooms(self, rooms: Set[str]) -> None:
        """Store the watched room set. Raises PersistenceError."""
        pass

    @abstractmethod
    def restore_rooms(self) -> Set[str]:
        """Load the watched room set (empty if nothing stored)."""
        pass

    @property
    def durable(self) -> bool:
        """Whether anything written here survives a restart."""
        return True

    def save_token(self, credential: Credential, next_batch: str) -> None:
        """Advance the resumption token and write the credential through."""
        credential.next_batch = next_batch
        self.persist(credential)


class EphemeralSessionStore(SessionStore):
    """Keeps nothing; every start logs in afresh."""

    def exists(self) -> bool:
        return False

    def restore(self) -> Credential:
        raise SessionNotFound("Ephemeral session store holds no session")

    def persist(self, credential: Credential) -> None:
        pass

    def wipe(self) -> None:
        pass

    def persist_rooms(self, rooms: Set[str]) -> None:
        pass

    def restore_rooms(self) -> Set[str]:
        return set()

    @property
    def durable(self) -> bool:
        return False


class FileSessionStore(SessionStore):
    """Encrypted session blob inside a dedicated store directory."""

    def __init__(self, path: str, passphrase: str):
        super().__init__()
        if not passphrase:
            raise ConfigurationError("File session store requires a passphrase", {'path': path})
        self.path = path
        self._passphrase = passphrase.encode('utf-8')

    @property
    def session_file(self) -> str:
        return os.path.join(self.path, SESSION_FILE)

    @property
    def rooms_file(self) -> str:
        return os.path.join(self.path, ROOMS_FILE)

    def exists(self) -> bool:
        return os.path.isfile(self.session_file)

    def restore(self) -> Credential:
        if not self.exists():
            raise SessionNotFound(f"No session stored at {self.session_file}")

        try:
            with open(self.session_file, 'r', encoding='utf-8') as f:
                blob = json.load(f)
            plaintext = self._decrypt(blob)
            return Credential.from_dict(json.loads(plaintext))
        except (OSError, ValueError, KeyError, TypeError, AttributeError, InvalidTag) as e:
            raise SessionCorrupt(
                f"Stored session cannot be decoded: {type(e).__name__}",
                {'path': self.session_file},
            ) from e

    def persist(self, credential: Credential) -> None:
        plaintext = json.dumps(credential.to_dict()).encode('utf-8')
        self._write_atomic(self.session_file, json.dumps(self._encrypt(plaintext)))

    def wipe(self) -> None:
        if os.path.isdir(self.path):
            shutil.rmtree(self.path)
            self.logger.info(f"Wiped session store at {self.path}")

    def persist_rooms(self, rooms: Set[str]) -> None:
        self._write_atomic(self.rooms_file, json.dumps(sorted(rooms), indent=2))

    def restore_rooms(self) -> Set[str]:
        if not os.path.isfile(self.rooms_file):
            return set()
        try:
            with open(self.rooms_file, 'r', encoding='utf-8') as f:
                return set(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            self.logger.warning(f"Could not load watched rooms from {self.rooms_file}: {e}")
            return set()

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._passphrase)

    def _encrypt(self, plaintext: bytes) -> Dict[str, object]:
        salt = os.urandom(16)
        nonce = os.urandom(12)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext, None)
        return {
            'version': BLOB_VERSION,
            'salt': base64.b64encode(salt).decode('ascii'),
            'nonce': base64.b64encode(nonce).decode('ascii'),
            'ciphertext': base64.b64encode(ciphertext).decode('ascii'),
        }

    def _decrypt(self, blob: Dict[str, object]) -> bytes:
        if blob.get('version') != BLOB_VERSION:
            raise ValueError(f"unsupported blob version {blob.get('version')!r}")
        salt = base64.b64decode(blob['salt'])
        nonce = base64.b64decode(blob['nonce'])
        ciphertext = base64.b64decode(blob['ciphertext'])
        return AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)

    def _write_atomic(self, target: str, content: str) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        try:
            os.makedirs(self.path, mode=0o700, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path, prefix='.tmp-')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write {target}: {e}", {'path': target}) from e


class KeyringSessionStore(SessionStore):
    """Credential kept as one JSON secret in the OS secret store."""

    REQUIRED_FIELDS = ('user_id', 'device_id', 'access_token')
    OPTIONAL_FIELDS = ('refresh_token', 'next_batch')
    SESSION_FIELD = 'session'
    ROOMS_FIELD = 'watched_rooms'

    def __init__(self, collection: str):
        super().__init__()
        self.collection = collection

    def exists(self) -> bool:
        try:
            return keyring.get_password(self.collection, self.SESSION_FIELD) is not None
        except KeyringError as e:
            self.logger.warning(f"Secret store unavailable for {self.collection}: {e}")
            return False

    def restore(self) -> Credential:
        try:
            raw = keyring.get_password(self.collection, self.SESSION_FIELD)
        except KeyringError as e:
            raise SessionNotFound(f"Secret store unavailable: {e}", {'collection': self.collection}) from e
        if raw is None:
            raise SessionNotFound("No session in secret store", {'collection': self.collection})

        try:
            values = json.loads(raw)
        except ValueError as e:
            raise SessionCorrupt(f"Stored session is unreadable: {e}", {'collection': self.collection}) from e
        if not isinstance(values, dict):
            raise SessionCorrupt("Stored session is not an object", {'collection': self.collection})

        missing = [field for field in self.REQUIRED_FIELDS if not values.get(field)]
        if missing:
            raise SessionNotFound(
                f"Secret store is missing {', '.join(missing)}",
                {'collection': self.collection},
            )
        return Credential.from_dict({
            field: values.get(field) or None
            for field in self.REQUIRED_FIELDS + self.OPTIONAL_FIELDS
        })

    def persist(self, credential: Credential) -> None:
        data = {key: value for key, value in credential.to_dict().items() if value}
        try:
            keyring.set_password(self.collection, self.SESSION_FIELD, json.dumps(data))
        except KeyringError as e:
            raise PersistenceError(f"Could not write session to secret store: {e}",
                                   {'collection': self.collection}) from e

    def wipe(self) -> None:
        try:
            for field in (self.SESSION_FIELD, self.ROOMS_FIELD):
                self._delete(field)
        except KeyringError as e:
            self.logger.error(f"Could not wipe secret store {self.collection}: {e}")
            return
        self.logger.info(f"Wiped secret store {self.collection}")

    def persist_rooms(self, rooms: Set[str]) -> None:
        try:
            keyring.set_password(self.collection, self.ROOMS_FIELD, json.dumps(sorted(rooms)))
        except KeyringError as e:
            raise PersistenceError(f"Could not write watched rooms to secret store: {e}",
                                   {'collection': self.collection}) from e

    def restore_rooms(self) -> Set[str]:
        try:
            raw = keyring.get_password(self.collection, self.ROOMS_FIELD)
        except KeyringError as e:
            self.logger.warning(f"Could not read watched rooms from secret store: {e}")
            return set()
        if not raw:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError) as e:
            self.logger.warning(f"Stored watched rooms are unreadable: {e}")
            return set()

    def _delete(self, field: str) -> None:
        try:
            keyring.delete_password(self.collection, field)
        except PasswordDeleteError:
            pass


def create_session_store(backend: Optional[SessionBackend]) -> SessionStore:
    """
    Build the store for a backend value.

    Args:
        backend: One SessionBackend variant, or None for ephemeral

    Returns:
        SessionStore instance
    """
    if backend is None or isinstance(backend, EphemeralBackend):
        return EphemeralSessionStore()
    if isinstance(backend, FileBackend):
        return FileSessionStore(backend.path, backend.passphrase)
    if isinstance(backend, SecretStoreBackend):
        return KeyringSessionStore(backend.collection)
    raise ConfigurationError(f"Unknown session backend: {backend!r}")
