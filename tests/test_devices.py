"""Tests for the device registry and the device-choice flow."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kindlesend.pipeline import (
    DeviceRegistry, DeviceSelector, DeliveryDispatcher, DeliveryStatus,
    NoPendingFile, UnknownDevice, make_token, parse_token
)


def test_parse_keeps_configuration_order():
    registry = DeviceRegistry.parse("Kindle Paperwhite:a@kindle.com|Kindle Oasis:b@kindle.com|Scribe:c@kindle.com")

    assert registry.labels == ["Kindle Paperwhite", "Kindle Oasis", "Scribe"]
    assert registry.lookup("Kindle Oasis") == "b@kindle.com"
    assert registry.destination_count() == 3
    assert registry.single_destination() is None


def test_parse_skips_invalid_entries():
    registry = DeviceRegistry.parse(" |NoColon|:x@kindle.com|Bad:not-an-email|Good : g@kindle.com ")

    assert registry.labels == ["Good"]
    assert registry.lookup("Good") == "g@kindle.com"


def test_parse_rejects_labels_too_long_for_a_button():
    registry = DeviceRegistry.parse("%s:a@kindle.com" % ("x" * 60))
    assert registry.labels == []


def test_registry_is_read_only():
    registry = DeviceRegistry.parse("A:a@kindle.com")
    with pytest.raises(TypeError):
        registry.devices["B"] = "b@kindle.com"


def test_fallback_wins_over_single_device():
    registry = DeviceRegistry.parse("A:a@kindle.com", fallback_address="me@kindle.com")

    assert registry.destination_count() == 1
    assert registry.single_destination() == "me@kindle.com"


def test_single_device_without_fallback():
    registry = DeviceRegistry.parse("A:a@kindle.com")
    assert registry.single_destination() == "a@kindle.com"


def test_no_destinations():
    registry = DeviceRegistry.parse("")
    assert registry.destination_count() == 0
    assert registry.single_destination() is None


def test_tokens():
    assert make_token("Kindle Oasis") == "send_kindle:Kindle Oasis"
    assert parse_token("send_kindle:Kindle Oasis") == "Kindle Oasis"
    assert parse_token("other:thing") is None
    assert parse_token("") is None


@pytest.fixture
def registry():
    return DeviceRegistry.parse("Kindle Paperwhite:a@kindle.com|Kindle Oasis:b@kindle.com|Scribe:c@kindle.com")


@pytest.fixture
def mailer():
    return MagicMock()


@pytest.fixture
def selector(registry, store, mailer):
    return DeviceSelector(registry, store, DeliveryDispatcher(store, mailer), buttons_per_row=2)


def test_build_choice_rows(selector, pending):
    pending(user_id=7, name="book.epub")

    choice = selector.build_choice(7)

    assert choice.display_file_name == "book.epub"
    assert choice.labels == ["Kindle Paperwhite", "Kindle Oasis", "Scribe"]
    assert choice.rows == [["Kindle Paperwhite", "Kindle Oasis"], ["Scribe"]]


def test_build_choice_without_pending_file(selector):
    with pytest.raises(NoPendingFile):
        selector.build_choice(7)


def test_resolve_unknown_device(selector):
    with pytest.raises(UnknownDevice):
        selector.resolve(7, "Kobo")


def test_selection_delivers_to_chosen_device(selector, pending, store, mailer):
    session = pending(user_id=7, name="book.epub")

    result = selector.handle_selection(7, "send_kindle:Kindle Oasis")

    assert result.device_name == "Kindle Oasis"
    assert result.delivery.status is DeliveryStatus.DELIVERED
    mailer.assert_called_once_with("b@kindle.com", "Book: book.epub", session.staged_file_path)
    assert store.get(7) is None
    assert not Path(session.staged_file_path).exists()


def test_unknown_device_keeps_pending_file(selector, pending, store, mailer):
    session = pending(user_id=7)

    result = selector.handle_selection(7, "send_kindle:Kobo")

    assert result.unknown_device
    assert result.delivery is None
    mailer.assert_not_called()
    assert store.get(7) == session


def test_foreign_token_is_ignored(selector, pending, store, mailer):
    pending(user_id=7)

    assert selector.handle_selection(7, "vote:yes") is None
    mailer.assert_not_called()
    assert store.get(7) is not None


def test_second_selection_finds_nothing(selector, pending, mailer):
    pending(user_id=7)

    first = selector.handle_selection(7, "send_kindle:Scribe")
    second = selector.handle_selection(7, "send_kindle:Scribe")

    assert first.delivery.status is DeliveryStatus.DELIVERED
    assert second.delivery.status is DeliveryStatus.NO_PENDING_FILE
    assert mailer.call_count == 1
