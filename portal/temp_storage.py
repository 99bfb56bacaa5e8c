"""Temporary local buffers for multipart uploads awaiting transfer."""

import logging
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import UploadFile

from common.types import FileUpload
from portal.exceptions import InvalidUploadError

logger = logging.getLogger(__name__)

READ_BLOCK_BYTES = 1024 * 1024


class TempUploadStore:
    """
    Spools multipart parts to a private temp directory.

    Buffers are released by the orchestrator once the upload terminates,
    whatever the outcome.
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)

    def init(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    async def spool(self, source: UploadFile, max_size_bytes: Optional[int] = None) -> FileUpload:
        """
        Copy a multipart part to disk and keep its bytes for the transfer.

        Args:
            source: Multipart part from the request
            max_size_bytes: Reject parts larger than this

        Returns:
            FileUpload pointing at the spooled buffer

        Raises:
            InvalidUploadError: If the part exceeds max_size_bytes
        """
        self.init()
        suffix = Path(source.filename or "").suffix
        target = self.root / f"{uuid4().hex}{suffix}"

        blocks = []
        total = 0
        with target.open("wb") as f:
            while True:
                block = await source.read(READ_BLOCK_BYTES)
                if not block:
                    break
                total += len(block)
                if max_size_bytes is not None and total > max_size_bytes:
                    f.close()
                    target.unlink(missing_ok=True)
                    raise InvalidUploadError(f"File exceeds max upload size of {max_size_bytes} bytes")
                f.write(block)
                blocks.append(block)

        logger.debug(f"Spooled {source.filename} to {target} ({total} bytes)")
        return FileUpload(
            data=b"".join(blocks),
            name=source.filename or target.name,
            mime_type=source.content_type or "application/octet-stream",
            size=total,
            path=str(target),
        )

    @staticmethod
    def release(upload: Optional[FileUpload]) -> bool:
        """
        Delete the temporary buffer of an upload.

        Failures are logged and never raised so they cannot mask the outcome
        of the upload itself.

        Returns:
            True if a buffer was deleted or none existed, False on failure
        """
        if upload is None or not upload.path:
            return True
        try:
            Path(upload.path).unlink(missing_ok=True)
            logger.debug(f"Released temporary buffer {upload.path}")
            return True
        except OSError as e:
            logger.error(f"Failed to release temporary buffer {upload.path}: {e}")
            return False
