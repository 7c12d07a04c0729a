"""
Model interaction logging.

Writes requests, responses and errors of completion calls to a dedicated
rotating log file when LLM logging is enabled in configuration.
"""

import json
import logging
import logging.handlers
import time
from datetime import datetime, timezone

from jsonoracle.config import Settings
from jsonoracle.inference.base import CompletionResult

logger = logging.getLogger(__name__)

LLM_LOGGER_NAME = "jsonoracle.llm"


class LLMLogger:
    """
    Logger for completion backend interactions.

    Log lines are ``REQUEST:``/``RESPONSE:``/``ERROR:`` followed by a JSON
    object, correlated by ``request_id``.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.llm_logger = logging.getLogger(LLM_LOGGER_NAME)
        self.enabled = settings.llm_logging_enabled

        if self.enabled and settings.log_file_enabled:
            self._setup_file_handler()

    def _setup_file_handler(self) -> None:
        """Setup dedicated file handler for LLM logs."""
        llm_dir = self.settings.log_directory / "llm"
        llm_dir.mkdir(parents=True, exist_ok=True)
        llm_log_path = llm_dir / "requests.log"

        # Handlers survive container rebuilds in one process; add only once
        for handler in self.llm_logger.handlers:
            if getattr(handler, "baseFilename", None) == str(llm_log_path.resolve()):
                return

        handler = logging.handlers.RotatingFileHandler(
            llm_log_path,
            maxBytes=self.settings.log_max_bytes,
            backupCount=self.settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

        self.llm_logger.addHandler(handler)
        self.llm_logger.setLevel(logging.INFO)
        self.llm_logger.propagate = False

    def log_request(self, model_id: str, prompt: str) -> str:
        """
        Log a completion request.

        Returns:
            str: Request ID for correlating with the response
        """
        if not self.enabled:
            return ""

        request_id = f"{model_id}_{int(time.time() * 1000)}"
        log_entry = {
            "type": "request",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": model_id,
            "prompt_length": len(prompt),
        }
        if self.settings.llm_log_prompts:
            log_entry["prompt_preview"] = prompt[:500] + "..." if len(prompt) > 500 else prompt

        self.llm_logger.info(f"REQUEST: {json.dumps(log_entry)}")
        return request_id

    def log_response(self, request_id: str, result: CompletionResult) -> None:
        if not self.enabled:
            return

        log_entry = {
            "type": "response",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": result.model,
            "finish_reason": result.finish_reason,
            "content_length": len(result.text),
            "duration_ms": round(result.latency_ms, 2),
            "tokens": {
                "prompt": result.prompt_tokens,
                "completion": result.completion_tokens,
            },
        }
        if self.settings.llm_log_responses and result.text:
            log_entry["content_preview"] = (
                result.text[:200] + "..." if len(result.text) > 200 else result.text
            )

        self.llm_logger.info(f"RESPONSE: {json.dumps(log_entry)}")

    def log_error(self, request_id: str, error: Exception) -> None:
        if not self.enabled:
            return

        log_entry = {
            "type": "error",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        self.llm_logger.error(f"ERROR: {json.dumps(log_entry)}")
