"""Interface of the object store the uploader talks to."""

from abc import ABC, abstractmethod
from typing import List

from .models import CompletedPart


class ObjectStore(ABC):
    """Minimal object store surface needed for simple and multipart uploads.

    Implementations raise :class:`~oss_uploader.core.exceptions.TransportError`
    (or a subclass) for failed remote calls so the retry policy can treat them
    as transient.
    """

    @abstractmethod
    def simple_put(self, key: str, path: str, content_type: str) -> str:
        """Upload a whole file in one request and return the object URL."""

    @abstractmethod
    def initiate_multipart(self, key: str, content_type: str) -> str:
        """Open a multipart session and return its ID."""

    @abstractmethod
    def upload_part(self, key: str, session_id: str, part_number: int, data: bytes) -> str:
        """Upload one part and return its ETag."""

    @abstractmethod
    def complete_multipart(
        self, key: str, session_id: str, parts: List[CompletedPart]
    ) -> str:
        """Assemble the parts (sorted by part number) and return the object URL."""

    @abstractmethod
    def abort_multipart(self, key: str, session_id: str) -> None:
        """Discard a multipart session and its uploaded parts."""

    @abstractmethod
    def object_url(self, key: str) -> str:
        """Return the public URL of ``key``."""
