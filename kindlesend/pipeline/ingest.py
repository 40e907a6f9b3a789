"""
Document ingest: sanitize -> stage -> convert if needed -> cache session -> send directly or ask for a device.
"""

import logging
import shutil
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Hashable, Iterable, Optional, Union

from .convert import ConversionResult
from .deliver import DeliveryDispatcher, DeliveryStatus, mask_email
from .devices import DeviceChoice, DeviceRegistry, DeviceSelector
from .errors import InvalidFileName, NoPendingFile
from .formats import MAX_FILE_NAME_LENGTH, file_extension, name_length, needs_conversion, sanitize_file_name
from .session import PendingSession, SessionStore, prune_empty_dir

logger = logging.getLogger(__name__)

ByteSource = Union[bytes, Iterable[bytes]]
Converter = Callable[[Path, Path], ConversionResult]
STAGING_DIR_ATTEMPTS = 3

@dataclass
class IngestConfig:
    tmp_dir: str="/files/"
    target_format: str="epub"

class IngestStatus(str, Enum):
    SENT = "success"
    CONVERTED_AND_SENT = "converted-and-sent"
    AWAITING_CHOICE = "awaiting-choice"
    INVALID_INPUT = "invalid-input"
    STORAGE_FAILURE = "storage-failure"
    CONVERSION_FAILED = "conversion-failed"
    NO_DEVICES = "no-devices"
    DELIVERY_FAILED = "delivery-failed"
    NO_PENDING_FILE = "no-pending-file"

@dataclass
class IngestResult:
    status: IngestStatus
    message: str
    display_file_name: Optional[str]=None
    choice: Optional[DeviceChoice]=None

    @property
    def success(self) -> bool:
        return self.status in (IngestStatus.SENT, IngestStatus.CONVERTED_AND_SENT, IngestStatus.AWAITING_CHOICE)

def choice_prompt(display_file_name: str) -> str:
    return f"📱 Which Kindle device would you like to send '{display_file_name}' to?\n\nSelect one:"

def _write_source(path: Path, byte_source: ByteSource) -> int:
    chunks = [byte_source] if isinstance(byte_source, (bytes, bytearray)) else byte_source
    written = 0
    with open(path, "wb") as f:
        for chunk in chunks:
            if chunk:
                f.write(chunk)
                written += len(chunk)
    return written

class IngestPipeline:
    def __init__(self, config: IngestConfig, store: SessionStore, registry: DeviceRegistry,
                 converter: Converter, dispatcher: DeliveryDispatcher, selector: DeviceSelector):
        self.config = config
        self.store = store
        self.registry = registry
        self.converter = converter
        self.dispatcher = dispatcher
        self.selector = selector

    def _make_staging_dir(self, user_id: Hashable) -> Path:
        """Fresh directory per upload so concurrent or repeated uploads never share a path"""
        staging_dir = Path(self.config.tmp_dir) / str(user_id) / uuid.uuid4().hex
        for attempt in range(STAGING_DIR_ATTEMPTS):
            try:
                staging_dir.mkdir(parents=True, exist_ok=False)
                return staging_dir
            except FileNotFoundError:
                # The user directory was pruned by a concurrent cleanup between its creation and ours
                if attempt == STAGING_DIR_ATTEMPTS - 1:
                    raise
        return staging_dir

    def _discard_dir(self, staging_dir: Path):
        shutil.rmtree(staging_dir, ignore_errors=True)
        prune_empty_dir(staging_dir.parent)

    def handle_document(self, user_id: Hashable, declared_name: str, byte_source: ByteSource) -> IngestResult:
        logger.debug(f"Received document: {declared_name} from user {user_id}")

        # Received -> Staged
        try:
            file_name = sanitize_file_name(declared_name)
        except InvalidFileName as e:
            logger.error(f"Invalid filename from user {user_id}: {e}")
            return IngestResult(IngestStatus.INVALID_INPUT, "❌ Invalid filename. Please check the file and try again.")

        extension = file_extension(file_name)
        converted = needs_conversion(extension) and extension != self.config.target_format
        output_name = None
        if converted:
            stem = file_name[:-(len(extension) + 1)] if extension else file_name
            output_name = f"{stem}.{self.config.target_format}"
            if name_length(output_name) > MAX_FILE_NAME_LENGTH:
                logger.error(f"Converted name of {file_name} from user {user_id} would exceed {MAX_FILE_NAME_LENGTH} bytes")
                return IngestResult(IngestStatus.INVALID_INPUT, "❌ Invalid filename. Please check the file and try again.", file_name)

        try:
            staging_dir = self._make_staging_dir(user_id)
        except OSError as e:
            logger.error(f"Could not create staging directory under {self.config.tmp_dir}: {e}")
            return IngestResult(IngestStatus.STORAGE_FAILURE, "❌ System error: could not prepare file storage", file_name)

        original_path = staging_dir / file_name
        try:
            size = _write_source(original_path, byte_source)
        except Exception as e:
            # byte_source is supplied by the transport: any failure while reading or writing ends this upload
            logger.error(f"Could not download {file_name} for user {user_id}: {e}")
            self._discard_dir(staging_dir)
            return IngestResult(IngestStatus.STORAGE_FAILURE, "❌ Could not download file", file_name)

        if size == 0:
            logger.warning(f"Empty upload {file_name} from user {user_id}")
            self._discard_dir(staging_dir)
            return IngestResult(IngestStatus.INVALID_INPUT, "❌ The file is empty.", file_name)

        # Staged -> Converted | ConversionSkipped | ConversionFailed
        file_to_send = original_path
        if converted:
            output_path = staging_dir / output_name
            logger.debug(f"Converting {extension or 'extensionless file'} to {self.config.target_format.upper()} format...")
            result = self.converter(original_path, output_path)
            if not result.success:
                logger.error(f"Could not convert {file_name}: {result.error}")
                self._discard_dir(staging_dir)
                return IngestResult(IngestStatus.CONVERSION_FAILED, "❌ Could not convert file", file_name)
            file_to_send = output_path

        session = PendingSession(
            user_id=user_id,
            staged_file_path=str(file_to_send),
            original_file_path=str(original_path),
            display_file_name=file_name,
            staging_dir=str(staging_dir)
        )

        # Routing: checked before caching so a misconfigured bot never leaves a session behind
        destinations = self.registry.destination_count()
        if destinations == 0:
            logger.error("No Kindle devices configured")
            self.store.discard(session)
            return IngestResult(IngestStatus.NO_DEVICES, "❌ No Kindle devices configured", file_name)

        # -> CachedAwaitingRoute
        superseded = self.store.put(user_id, session)
        if superseded is not None:
            self.store.discard(superseded)

        if destinations == 1:
            address = self.registry.single_destination()
            logger.debug(f"Sending file via email to {mask_email(address)}...")
            delivery = self.dispatcher.deliver(user_id, address)
            if delivery.status is DeliveryStatus.DELIVERED:
                status = IngestStatus.CONVERTED_AND_SENT if converted else IngestStatus.SENT
                return IngestResult(status, "✅ File sent successfully to your Kindle!", file_name)
            if delivery.status is DeliveryStatus.NO_PENDING_FILE:
                # A newer upload from the same user replaced this one before it was sent
                return IngestResult(IngestStatus.NO_PENDING_FILE, "❌ File not found. Please send it again.", file_name)
            return IngestResult(IngestStatus.DELIVERY_FAILED, "❌ Could not send file. Check logs for details", file_name)

        # -> AwaitingChoice
        try:
            choice = self.selector.build_choice(user_id)
        except NoPendingFile:
            return IngestResult(IngestStatus.NO_PENDING_FILE, "❌ File not found. Please send it again.", file_name)
        logger.info(f"Waiting for device choice from user {user_id} for {file_name}")
        return IngestResult(IngestStatus.AWAITING_CHOICE, choice_prompt(file_name), file_name, choice)
