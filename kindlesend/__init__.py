"""Send documents from Telegram to Kindle devices by email."""

__version__ = "1.0.0"
