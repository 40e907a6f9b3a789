"""
Telegram Bot API transport: long polling, message/keyboard rendering and file download.
Each update runs as its own task on a thread pool; tasks share nothing but the session store.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Optional

import requests

from .pipeline import (
    DeviceChoice, DeviceSelector, DeliveryStatus, IngestPipeline, SessionStore,
    make_token, sweep_expired_sessions
)

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.telegram.org"

class TelegramError(Exception):
    """Bot API answered with ok=false or an unexpected payload"""

class TelegramClient:
    def __init__(self, token: str, poll_timeout_seconds: int=10, base_url: str=API_BASE_URL):
        self.token = token
        self.poll_timeout_seconds = poll_timeout_seconds
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()

    def _request(self, method: str, payload: Optional[Dict[str, Any]]=None, timeout: Optional[float]=None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        response = self.session.post(url, json=payload or {}, timeout=timeout or self.poll_timeout_seconds + 10)
        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise TelegramError(f"{method}: response is not JSON")
        if not data.get("ok"):
            raise TelegramError(f"{method}: {data.get('description', 'unknown error')}")
        return data.get("result")

    def get_me(self) -> Dict[str, Any]:
        return self._request("getMe")

    def get_updates(self, offset: Optional[int]=None) -> List[Dict[str, Any]]:
        payload = {
            "timeout": self.poll_timeout_seconds,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return self._request("getUpdates", payload) or []

    def send_message(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]]=None):
        payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._request("sendMessage", payload)

    def answer_callback_query(self, callback_query_id: str, text: Optional[str]=None):
        payload = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return self._request("answerCallbackQuery", payload)

    def download_file(self, file_id: str, chunk_size: int=64 * 1024) -> Iterator[bytes]:
        """
        Resolve file_id and stream its content.

        getFile and the response status are checked before the first chunk is yielded,
        so lookup errors surface on the first next() call.
        """
        file_info = self._request("getFile", {"file_id": file_id})
        file_path = (file_info or {}).get("file_path")
        if not file_path:
            raise TelegramError(f"getFile: no file_path for {file_id}")

        response = self.session.get(f"{self.base_url}/file/bot{self.token}/{file_path}", stream=True,
                                    timeout=self.poll_timeout_seconds + 50)
        with response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=chunk_size):
                yield chunk

def device_keyboard(choice: DeviceChoice) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": label, "callback_data": make_token(label)} for label in row]
            for row in choice.rows
        ]
    }

class KindleBot:
    def __init__(self, client: TelegramClient, pipeline: IngestPipeline, selector: DeviceSelector,
                 store: SessionStore, max_workers: int=8, max_file_size_mb: float=20.0,
                 session_ttl_seconds: int=0, sweep_interval_seconds: int=300):
        self.client = client
        self.pipeline = pipeline
        self.selector = selector
        self.store = store
        self.max_workers = max_workers
        self.max_file_size_mb = max_file_size_mb
        self.session_ttl_seconds = session_ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._last_sweep = 0.0

    def _respond(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]]=None):
        try:
            self.client.send_message(chat_id, text, reply_markup)
        except (requests.RequestException, TelegramError) as e:
            logger.error(f"Could not send message to chat {chat_id}: {e}")

    def handle_update(self, update: Dict[str, Any]):
        message = update.get("message")
        if message and message.get("document"):
            self.handle_document(message)
            return
        callback_query = update.get("callback_query")
        if callback_query:
            self.handle_callback(callback_query)
            return
        logger.debug(f"Ignoring update {update.get('update_id')}")

    def handle_document(self, message: Dict[str, Any]):
        document = message["document"]
        user_id = message["from"]["id"]
        chat_id = message.get("chat", {}).get("id", user_id)
        declared_name = document.get("file_name") or ""

        file_size = document.get("file_size") or 0
        if file_size > self.max_file_size_mb * 1024 * 1024:
            logger.warning(f"Rejected {declared_name} from user {user_id}: {file_size} bytes")
            self._respond(chat_id, f"❌ File is too large. Telegram bots can only download files up to {self.max_file_size_mb:g}MB.")
            return

        byte_source = self.client.download_file(document["file_id"])
        result = self.pipeline.handle_document(user_id, declared_name, byte_source)

        reply_markup = device_keyboard(result.choice) if result.choice else None
        self._respond(chat_id, result.message, reply_markup)

    def handle_callback(self, callback_query: Dict[str, Any]):
        user_id = callback_query["from"]["id"]
        chat_id = (callback_query.get("message") or {}).get("chat", {}).get("id", user_id)
        token = callback_query.get("data") or ""
        logger.debug(f"Callback from user {user_id}: {token}")

        # Telegram expects the answer within seconds, mailing can take longer
        try:
            self.client.answer_callback_query(callback_query["id"])
        except (requests.RequestException, TelegramError) as e:
            logger.warning(f"Could not answer callback query: {e}")

        result = self.selector.handle_selection(user_id, token)
        if result is None:
            return

        if result.unknown_device:
            self._respond(chat_id, "❌ Device not found")
        elif result.delivery.status is DeliveryStatus.NO_PENDING_FILE:
            self._respond(chat_id, "❌ File not found. Please send it again.")
        elif result.delivery.status is DeliveryStatus.FAILED:
            self._respond(chat_id, f"❌ Could not send to {result.device_name}. Please send the file again.")
        else:
            self._respond(chat_id, f"✅ Book sent to {result.device_name}!")

    def _run_task(self, update: Dict[str, Any]):
        try:
            self.handle_update(update)
        except Exception as e:
            # One bad update must not take the poll loop down
            logger.error(f"Failed to handle update {update.get('update_id')}: {e}", exc_info=True)

    def sweep_if_due(self, now: Optional[float]=None):
        if self.session_ttl_seconds <= 0:
            return
        now = time.time() if now is None else now
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        self._last_sweep = now
        sweep_expired_sessions(self.store, self.session_ttl_seconds, now)

    def serve_forever(self):
        """Poll for updates until interrupted. Blocking."""
        offset = None
        logger.info("Bot successfully created and listening for documents...")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while True:
                try:
                    self.sweep_if_due()
                    updates = self.client.get_updates(offset)
                except (requests.RequestException, TelegramError) as e:
                    logger.warning(f"Poll error: {e}")
                    time.sleep(2)
                    continue
                for update in updates:
                    offset = update["update_id"] + 1
                    executor.submit(self._run_task, update)
