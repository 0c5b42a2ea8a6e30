"""
Local credential cache.

Loads and stores the session identity and a stable per-installation
client identifier. Pure I/O, no protocol logic.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from ..local.file_ops import read_json, read_text, remove_file, write_json_atomic, write_text_atomic
from .types import Session

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract credential cache.

    Implementations persist two independent things:
    - the Session, replaced wholesale on every save
    - a client id, generated once and reused across sessions
    """

    @abstractmethod
    async def load(self) -> Session:
        """Load the cached session, or an empty Session if none exists.

        Raises:
            CredentialStoreError: If the cache exists but cannot be read
        """
        ...

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Persist the session, replacing any previous one."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove the cached session. The client id is kept."""
        ...

    @abstractmethod
    async def get_client_id(self) -> str:
        """Get or create the persistent client id."""
        ...


class FileCredentialStore(CredentialStore):
    """Credential cache backed by JSON files.

    Layout under base_dir (default ~/.hackterm):

        credentials.json   registered, handle, contact_id, recovery_code, session_token
        .client_id         stable per-installation identifier
    """

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or Path.home() / ".hackterm"
        self.credentials_path = self.base_dir / "credentials.json"
        self.client_id_path = self.base_dir / ".client_id"
        self._client_id: str | None = None

    async def load(self) -> Session:
        data = await read_json(self.credentials_path)
        if data is None:
            return Session()
        return Session.from_dict(data)

    async def save(self, session: Session) -> None:
        await write_json_atomic(self.credentials_path, session.to_dict())
        logger.debug(f"Saved credentials for {session.handle or '<anonymous>'}")

    async def clear(self) -> None:
        if await remove_file(self.credentials_path):
            logger.debug("Cleared cached credentials")

    async def get_client_id(self) -> str:
        """Get or create the persistent client id.

        The id is stored in {base_dir}/.client_id and persists across
        sessions and logouts.
        """
        if self._client_id is not None:
            return self._client_id

        stored = await read_text(self.client_id_path)
        if stored:
            self._client_id = stored
            return self._client_id

        self._client_id = str(uuid.uuid4())
        await write_text_atomic(self.client_id_path, self._client_id)
        logger.info(f"Generated client id {self._client_id}")
        return self._client_id


class MemoryCredentialStore(CredentialStore):
    """In-process credential cache for embedding and tests.

    Nothing survives the process; the client id is fixed at construction.
    """

    def __init__(self, session: Session | None = None, client_id: str | None = None):
        self.session = session or Session()
        self.client_id = client_id or str(uuid.uuid4())
        self.save_count = 0

    async def load(self) -> Session:
        return self.session

    async def save(self, session: Session) -> None:
        self.session = session
        self.save_count += 1

    async def clear(self) -> None:
        self.session = Session()

    async def get_client_id(self) -> str:
        return self.client_id
