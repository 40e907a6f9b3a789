from .convert import convert, ConverterConfig, ConversionResult
from .deliver import send_email, DelivererConfig, DeliveryDispatcher, DeliveryResult, DeliveryStatus, mask_email
from .devices import DeviceRegistry, DeviceSelector, DeviceChoice, SelectionResult, make_token, parse_token
from .errors import KindleSendError, InvalidFileName, NoPendingFile, UnknownDevice, DeliveryFailed
from .formats import needs_conversion, sanitize_file_name, file_extension, supported_formats
from .ingest import IngestPipeline, IngestConfig, IngestResult, IngestStatus
from .session import PendingSession, SessionStore, InMemorySessionStore, sweep_expired_sessions

__all__ = [name for name in globals() if not name.startswith('__')]
__version__ = "1.0.0"

"""
Core components of the send-to-Kindle delivery pipeline.
"""
