"""
Document stores for the daily listening logs.

Every store implements the same contract: ``read`` returns the content and a
version token, ``write`` only succeeds when the caller's expected version
still matches what is stored.
"""

import base64
import hashlib
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, NamedTuple, Optional

import requests

from history_sync.errors import AuthError, ConflictError, FetchError, InvalidPathError, NotFoundError
from history_sync.utils.logger import get_logger


logger = get_logger()


class StoredDocument(NamedTuple):
    content: str
    version: str


class DocumentStore(ABC):
    """Versioned storage for text documents addressed by relative path."""

    @abstractmethod
    def read(self, path: str) -> StoredDocument:
        """
        Read a document.

        Raises:
            NotFoundError: If the document does not exist
        """

    @abstractmethod
    def write(self, path: str, content: str, expected_version: Optional[str], message: str) -> str:
        """
        Create (``expected_version`` is None) or update a document.

        Returns:
            The new version token

        Raises:
            ConflictError: If the stored version differs from ``expected_version``
        """


class GitHubDocumentStore(DocumentStore):
    """Store backed by a GitHub repository through the contents API."""

    BASE_URL = "https://api.github.com"

    def __init__(self, token: str, repo: str, branch: str = "main", timeout: float = 10.0):
        """
        Initialize the GitHub store.

        Args:
            token: Personal access token with contents write permission
            repo: Repository as ``owner/name``
            branch: Branch the documents are committed to
            timeout: Timeout in seconds for each API call
        """
        self.repo = repo
        self.branch = branch
        self.timeout = timeout

        self._session = requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    def _url(self, path: str) -> str:
        return f"{self.BASE_URL}/repos/{self.repo}/contents/{path.lstrip('/')}"

    def _raise_for_status(self, response: requests.Response, path: str, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return

        context = {'path': path, 'operation': operation, 'status': status}
        if status == 404:
            raise NotFoundError(f"Document not found: {path}", context=context)
        if status == 409 or (status == 422 and operation == 'create'):
            raise ConflictError(f"Stale version for {path}", context=context)
        if status == 401 or (status == 403 and response.headers.get('X-RateLimit-Remaining') != '0'):
            raise AuthError(f"GitHub rejected the credentials: {response.text}", context=context)
        raise FetchError(f"GitHub API request failed: {response.text}", context=context)

    def read(self, path: str) -> StoredDocument:
        try:
            response = self._session.get(
                self._url(path),
                params={'ref': self.branch},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Failed to fetch file from GitHub: {e}")
            raise FetchError(f"GitHub request failed: {e}", context={'path': path, 'operation': 'read'}) from e

        self._raise_for_status(response, path, 'read')

        data = response.json()
        if not isinstance(data, dict) or data.get('type') != 'file':
            raise FetchError(f"Path is not a file: {path}", context={'path': path, 'operation': 'read'})

        content = base64.b64decode(data['content']).decode('utf-8')
        return StoredDocument(content=content, version=data['sha'])

    def write(self, path: str, content: str, expected_version: Optional[str], message: str) -> str:
        operation = 'create' if expected_version is None else 'update'
        payload: Dict = {
            'message': message,
            'content': base64.b64encode(content.encode('utf-8')).decode('ascii'),
            'branch': self.branch,
        }
        if expected_version is not None:
            payload['sha'] = expected_version

        try:
            response = self._session.put(self._url(path), json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ GitHub push failed: {e}")
            raise FetchError(f"GitHub request failed: {e}", context={'path': path, 'operation': operation}) from e

        self._raise_for_status(response, path, operation)
        return response.json()['content']['sha']


class LocalDocumentStore(DocumentStore):
    """Store backed by a directory; the version token is a SHA-256 of the file."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise InvalidPathError(
                f"Path escapes the history directory: {path}",
                context={'path': path, 'root': str(root)}
            )
        return target

    @staticmethod
    def _version(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def read(self, path: str) -> StoredDocument:
        target = self._resolve(path)
        try:
            data = target.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Document not found: {path}", context={'path': path, 'operation': 'read'}) from e
        return StoredDocument(content=data.decode('utf-8'), version=self._version(data))

    def write(self, path: str, content: str, expected_version: Optional[str], message: str) -> str:
        target = self._resolve(path)
        operation = 'create' if expected_version is None else 'update'
        context = {'path': path, 'operation': operation}

        current = self._version(target.read_bytes()) if target.exists() else None
        if current != expected_version:
            raise ConflictError(f"Stale version for {path}", context=context)

        data = content.encode('utf-8')
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Wrote {len(data)} bytes to {target}")
        return self._version(data)
