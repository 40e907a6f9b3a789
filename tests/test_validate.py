"""Tests for the configuration validator."""

import smtplib
import subprocess
from unittest.mock import patch, MagicMock

from kindlesend.pipeline import DelivererConfig, ConverterConfig
from kindlesend.validate import ConfigValidator


def validator(port=587):
    return ConfigValidator({
        "deliver": DelivererConfig(smtp_server="smtp.example.com", sender="bot@example.com",
                                   password="pw", port=port),
        "convert": ConverterConfig(),
    })


def smtp_mock():
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    return factory, server


def test_email_login_succeeds():
    factory, server = smtp_mock()

    with patch("kindlesend.validate.smtplib.SMTP", factory):
        result = validator()._validate_email()

    assert result.success
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot@example.com", "pw")


def test_email_connection_closed_when_starttls_fails():
    factory, server = smtp_mock()
    server.starttls.side_effect = smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")

    with patch("kindlesend.validate.smtplib.SMTP", factory):
        result = validator()._validate_email()

    assert not result.success
    factory.return_value.__exit__.assert_called_once()
    server.login.assert_not_called()


def test_email_uses_ssl_on_465():
    factory, server = smtp_mock()

    with patch("kindlesend.validate.smtplib.SMTP_SSL", factory), \
            patch("kindlesend.validate.smtplib.SMTP") as plain:
        result = validator(port=465)._validate_email()

    assert result.success
    plain.assert_not_called()
    server.starttls.assert_not_called()
    factory.return_value.__exit__.assert_called_once()


def test_email_authentication_failure():
    factory, server = smtp_mock()
    server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    with patch("kindlesend.validate.smtplib.SMTP", factory):
        result = validator()._validate_email()

    assert not result.success
    assert result.message == "Email: Authentication failed"


def test_calibre_missing():
    with patch("subprocess.run", side_effect=FileNotFoundError()):
        result = validator()._validate_calibre()

    assert not result.success
    assert result.message == "Calibre: Not installed"


def test_calibre_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ebook-convert", timeout=10)):
        result = validator()._validate_calibre()

    assert not result.success
    assert result.message == "Calibre: Check timeout"
