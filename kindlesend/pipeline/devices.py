"""
Kindle device registry and the device-choice flow used when several devices are configured.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Hashable, List, Mapping, Optional, Tuple

from .deliver import DeliveryDispatcher, DeliveryResult, mask_email
from .errors import NoPendingFile, UnknownDevice
from .session import SessionStore

logger = logging.getLogger(__name__)

CALLBACK_DATA_PREFIX = "send_kindle:"
MAX_DEVICE_NAME_LENGTH = 100
MAX_CALLBACK_DATA_BYTES = 64 # Telegram limit for inline button payloads
BUTTONS_PER_ROW = 2

def _check_device(name: str, address: str) -> Optional[str]:
    """Reason the entry is unusable, None if it is fine"""
    if not name or not address:
        return "empty device name or email"
    if len(name) > MAX_DEVICE_NAME_LENGTH:
        return f"device name too long (max {MAX_DEVICE_NAME_LENGTH} chars)"
    if "@" not in address:
        return "invalid email format"
    if len((CALLBACK_DATA_PREFIX + name).encode("utf-8")) > MAX_CALLBACK_DATA_BYTES:
        return f"device name does not fit in a {MAX_CALLBACK_DATA_BYTES}-byte button payload"
    return None

@dataclass(frozen=True)
class DeviceRegistry:
    """Label -> address, in configuration order, plus an optional single fallback address. Read-only."""
    devices: Mapping[str, str]=field(default_factory=lambda: MappingProxyType({}))
    fallback_address: Optional[str]=None

    def __post_init__(self):
        if not isinstance(self.devices, MappingProxyType):
            object.__setattr__(self, "devices", MappingProxyType(dict(self.devices)))

    @classmethod
    def from_pairs(cls, pairs: List[Tuple[str, str]], fallback_address: Optional[str]=None) -> 'DeviceRegistry':
        """Build from (label, address) pairs, skipping invalid entries with a warning"""
        devices: Dict[str, str] = {}
        for name, address in pairs:
            name, address = (name or "").strip(), (address or "").strip()
            reason = _check_device(name, address)
            if reason:
                logger.warning(f"Skipping Kindle device '{name}': {reason}")
                continue
            devices[name] = address
            logger.debug(f"Registered Kindle device: {name}")
        fallback = (fallback_address or "").strip() or None
        return cls(devices=MappingProxyType(devices), fallback_address=fallback)

    @classmethod
    def parse(cls, devices_str: str, fallback_address: Optional[str]=None) -> 'DeviceRegistry':
        """
        Parse "Name:email|Name:email" as used by UBOT_KINDLE_DEVICES.

        Example: "Kindle Paperwhite:user1@kindle.com|Kindle Oasis:user2@kindle.com"
        """
        pairs = []
        for pair in (devices_str or "").split("|"):
            pair = pair.strip()
            if not pair:
                continue
            name, sep, address = pair.partition(":")
            if not sep:
                logger.warning(f"Invalid device format (expected 'Name:email'): {pair}")
                continue
            pairs.append((name, address))
        return cls.from_pairs(pairs, fallback_address)

    @property
    def labels(self) -> List[str]:
        return list(self.devices.keys())

    def lookup(self, label: str) -> Optional[str]:
        return self.devices.get(label)

    def destination_count(self) -> int:
        """More than one labeled device means the user has to choose; the fallback only counts without them"""
        if len(self.devices) > 1:
            return len(self.devices)
        if self.fallback_address or self.devices:
            return 1
        return 0

    def single_destination(self) -> Optional[str]:
        """The address to use when there is nothing to choose; the fallback wins over a lone device"""
        if self.destination_count() != 1:
            return None
        if self.fallback_address:
            return self.fallback_address
        return next(iter(self.devices.values()))

@dataclass
class DeviceChoice:
    display_file_name: str
    labels: List[str]
    rows: List[List[str]]

@dataclass
class SelectionResult:
    device_name: str
    delivery: Optional[DeliveryResult]=None
    unknown_device: bool=False

def make_token(label: str) -> str:
    return f"{CALLBACK_DATA_PREFIX}{label}"

def parse_token(token: str) -> Optional[str]:
    """Device label carried by a choice token, None for tokens this bot did not issue"""
    if not token or not token.startswith(CALLBACK_DATA_PREFIX):
        return None
    return token[len(CALLBACK_DATA_PREFIX):]

class DeviceSelector:
    def __init__(self, registry: DeviceRegistry, store: SessionStore, dispatcher: DeliveryDispatcher,
                 buttons_per_row: int=BUTTONS_PER_ROW):
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.buttons_per_row = max(1, buttons_per_row)

    def build_choice(self, user_id: Hashable) -> DeviceChoice:
        session = self.store.get(user_id)
        if session is None:
            raise NoPendingFile(f"no pending file for user {user_id}")

        labels = self.registry.labels
        rows = [labels[i:i + self.buttons_per_row] for i in range(0, len(labels), self.buttons_per_row)]
        for label in labels:
            logger.debug(f"Device button: {label} ({mask_email(self.registry.devices[label])})")
        return DeviceChoice(display_file_name=session.display_file_name, labels=labels, rows=rows)

    def resolve(self, user_id: Hashable, label: str) -> str:
        """Address for label. Does not consume the session, so the user may retry after UnknownDevice."""
        address = self.registry.lookup(label)
        if address is None:
            logger.error(f"Device not found: {label} (user {user_id})")
            raise UnknownDevice(label)
        return address

    def handle_selection(self, user_id: Hashable, token: str) -> Optional[SelectionResult]:
        """Complete a pending delivery from a choice token. None if the token is not ours."""
        label = parse_token(token)
        if label is None:
            logger.debug(f"Unknown callback: {token}")
            return None

        try:
            address = self.resolve(user_id, label)
        except UnknownDevice:
            return SelectionResult(device_name=label, unknown_device=True)

        logger.debug(f"Sending pending file of user {user_id} to {label} ({mask_email(address)})...")
        return SelectionResult(device_name=label, delivery=self.dispatcher.deliver(user_id, address))
