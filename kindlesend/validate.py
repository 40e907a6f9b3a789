"""
Connectivity and configuration validation for the Send-to-Kindle bot.
Tests Calibre availability, SMTP authentication and the Telegram bot token
"""

import smtplib
import subprocess
from typing import Dict, Any, Optional
from dataclasses import dataclass
import requests
import yaml

from .pipeline.deliver import _tls_context
from .telegram import TelegramClient, TelegramError
from .config import MainConfig

@dataclass
class ValidationResult:
    """Result of a validation check"""
    success: bool
    message: str
    details: Optional[Dict[str,Any]]=None
    error: Optional[str]=None

class ConfigValidator:
    """Checks the external services and tools a loaded configuration depends on"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def _validate_calibre(self) -> ValidationResult:
        """Check Calibre ebook-convert for format conversion"""
        print("Validating Calibre installation for ebook conversion...")
        executable = self.config["convert"].ebook_convert_path
        try:
            result = subprocess.run([executable, "--version"],
                                capture_output=True, text=True, timeout=10)

            if result.returncode == 0:
                version = result.stdout.split('\n')[0] if result.stdout else "Unknown"
                return ValidationResult(
                    success=True,
                    message=f"Calibre: {version}",
                    details={"executable": executable, "version": version}
                )
            else:
                return ValidationResult(
                    success=False,
                    message="Calibre: Not accessible",
                    error="ebook-convert command failed",
                    details={"stderr": result.stderr}
                )

        except subprocess.TimeoutExpired:
            return ValidationResult(
                success=False,
                message="Calibre: Check timeout",
                error="ebook-convert command timed out"
            )
        except FileNotFoundError:
            return ValidationResult(
                success=False,
                message="Calibre: Not installed",
                error=f"{executable} executable not found. Install Calibre to convert documents"
            )
        except OSError as e:
            return ValidationResult(
                success=False,
                message="Calibre: Validation error",
                error=str(e)
            )

    def _validate_email(self) -> ValidationResult:
        """Test SMTP configuration and authentication"""
        print("Validating SMTP configuration and authentication for email delivering...")
        deliver = self.config["deliver"]
        try:
            context = _tls_context(deliver.insecure)
            # Test authentication
            if deliver.port == 465:
                with smtplib.SMTP_SSL(deliver.smtp_server, deliver.port, timeout=10, context=context) as server:
                    server.login(deliver.sender, deliver.password)
            else:
                with smtplib.SMTP(deliver.smtp_server, deliver.port, timeout=10) as server:
                    server.starttls(context=context)
                    server.login(deliver.sender, deliver.password)

            return ValidationResult(
                success=True,
                message=f"Email: SMTP authenticated successfully ({deliver.smtp_server}:{deliver.port})",
                details={"server": deliver.smtp_server, "port": deliver.port, "sender": deliver.sender}
            )

        except smtplib.SMTPAuthenticationError:
            return ValidationResult(
                success=False,
                message="Email: Authentication failed",
                error="Invalid username or password for SMTP server"
            )
        except smtplib.SMTPConnectError:
            return ValidationResult(
                success=False,
                message="Email: Connection failed",
                error="Unable to connect to SMTP server"
            )
        except (smtplib.SMTPException, OSError) as e:
            return ValidationResult(
                success=False,
                message="Email: Configuration error",
                error=str(e)
            )

    def _validate_telegram(self) -> ValidationResult:
        """Check the bot token with getMe"""
        print("Validating Telegram bot token...")
        try:
            client = TelegramClient(self.config["telegram"].token, poll_timeout_seconds=1)
            me = client.get_me() or {}
            username = me.get("username", "unknown")
            return ValidationResult(
                success=True,
                message=f"Telegram: Authorized as @{username}",
                details={"username": username, "id": me.get("id")}
            )
        except TelegramError as e:
            return ValidationResult(
                success=False,
                message="Telegram: Token rejected",
                error=str(e)
            )
        except requests.RequestException as e:
            return ValidationResult(
                success=False,
                message="Telegram: Connection failed",
                error=str(e)
            )

    def validate_all(self) -> Dict[str, ValidationResult]:
        results = {"config_load": ValidationResult(success=True, message="Configuration loaded successfully")}
        results["calibre"] = self._validate_calibre()
        results["email"] = self._validate_email()
        results["telegram"] = self._validate_telegram()
        return results

def validate_config(config_path: Optional[str]=None) -> Dict[str,ValidationResult]:
    """Main validation function to be called by CLI"""
    try:
        if config_path:
            config = MainConfig.from_yaml(config_path)
        else:
            config = MainConfig.from_env()
    except (ValueError, OSError, TypeError, yaml.YAMLError) as e:
        return {"config_load": ValidationResult(
            success=False,
            message="Failed to load configuration",
            error=str(e)
        )}
    return ConfigValidator(config.get_pipeline_configs()).validate_all()
