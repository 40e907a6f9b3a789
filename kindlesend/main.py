"""
Wire configuration, pipeline components and the Telegram transport into a running bot
"""

import os
import logging
from datetime import date, datetime
from functools import partial
from typing import Optional

from .pipeline import (
    convert, send_email, mask_email,
    InMemorySessionStore, DeliveryDispatcher, DeviceSelector, IngestPipeline
)
from .telegram import TelegramClient, KindleBot
from .config import MainConfig

def setup_logging(log_dir: str, log_to_file: bool, verbose: bool = False):
    """Set up logging with appropriate verbosity level"""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler()]
    log_file_path = None

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        log_file_path = os.path.join(log_dir, f"bot-{date.today().isoformat()}-{datetime.now().strftime('%H')}.txt")
        file_handler = logging.FileHandler(log_file_path)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    # Suppress INFO/WARNING logs from noisy libraries
    logging.getLogger('urllib3').setLevel(logging.ERROR)

    return logging.getLogger(__name__), log_file_path

def load_config(config_path: Optional[str]=None) -> MainConfig:
    """YAML file when a path is given, UBOT_* environment variables otherwise"""
    if config_path:
        return MainConfig.from_yaml(config_path)
    return MainConfig.from_env()

def build_bot(config: dict) -> KindleBot:
    """Assemble the bot from pipeline configs (see MainConfig.get_pipeline_configs)"""
    registry = config["registry"]
    telegram = config["telegram"]

    store = InMemorySessionStore()
    dispatcher = DeliveryDispatcher(store, partial(send_email, config["deliver"]))
    selector = DeviceSelector(registry, store, dispatcher, buttons_per_row=config["buttons_per_row"])
    pipeline = IngestPipeline(
        config=config["ingest"],
        store=store,
        registry=registry,
        converter=partial(convert, config=config["convert"]),
        dispatcher=dispatcher,
        selector=selector
    )
    client = TelegramClient(telegram.token, poll_timeout_seconds=telegram.poll_timeout_seconds)
    return KindleBot(
        client=client,
        pipeline=pipeline,
        selector=selector,
        store=store,
        max_workers=telegram.max_workers,
        max_file_size_mb=telegram.max_file_size_mb,
        session_ttl_seconds=config["session_ttl_seconds"],
        sweep_interval_seconds=config["sweep_interval_seconds"]
    )

def run_bot(config_path: Optional[str]=None, verbose: bool=False):
    """Main entry of the send-to-Kindle bot. Blocks until interrupted."""
    config = load_config(config_path).get_pipeline_configs()
    logger, _ = setup_logging(
        log_dir=config["log_dir"],
        log_to_file=config["log_to_file"],
        verbose=verbose
    )

    deliver_config = config["deliver"]
    registry = config["registry"]
    logger.info("Starting Send-to-Kindle bot...")
    logger.info(f"Using SMTP: {deliver_config.smtp_server}:{deliver_config.port}")
    logger.info(f"Using temporary files path: {config['ingest'].tmp_dir}")
    if deliver_config.insecure:
        logger.warning("SMTP insecure mode is enabled - TLS certificate verification is disabled!")

    if len(registry.devices) > 1:
        logger.info(f"Available Kindle devices: {len(registry.devices)}")
        for name in registry.labels:
            logger.debug(f"  - {name}")
    else:
        logger.info(f"Using single Kindle device: {mask_email(registry.single_destination())}")

    if config["session_ttl_seconds"] > 0:
        logger.info(f"Pending files expire after {config['session_ttl_seconds'] // 60} minutes")

    bot = build_bot(config)
    try:
        bot.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        logging.shutdown()
