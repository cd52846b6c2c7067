import copy
import json
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGS_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOGS_DIR.mkdir(parents=True, exist_ok=True)


class ColoredFormatter(logging.Formatter):
    """Coloured level names for the terminal"""

    COLORS = {
        'DEBUG': '\033[36m',  # cyan
        'INFO': '\033[32m',  # green
        'WARNING': '\033[33m',  # yellow
        'ERROR': '\033[31m',  # red
        'CRITICAL': '\033[35m',  # magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        # the same record also goes to the file handler
        record = copy.copy(record)
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record.levelname = f"{log_color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logger(
        name: str,
        log_file: str = None,
        level: int = logging.DEBUG,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5
) -> logging.Logger:
    """
    Configure a logger writing to the console and, optionally, a rotating file.

    Args:
        name: logger name
        log_file: file name under LOGS_DIR (console only when None)
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        max_bytes: file size before rotation
        backup_count: number of rotated files to keep
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    log_format = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            LOGS_DIR / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        logger.addHandler(file_handler)

    return logger


def _format_error(title: str, error: Exception) -> str:
    return (
        f"{title}:\n"
        f"Error Type: {type(error).__name__}\n"
        f"Error Message: {str(error)}\n"
        f"Traceback:\n{traceback.format_exc()}"
    )


class DatabaseLogger:
    """Logging for repository and storage operations"""

    def __init__(self, logger_name: str = "database"):
        self.logger = setup_logger(
            name=logger_name,
            log_file=f"{logger_name}.log"
        )

    def log_create(self, model_name: str, data: dict):
        self.logger.info(
            f"CREATE {model_name}:\n{json.dumps(data, ensure_ascii=False, indent=2, default=str)}"
        )

    def log_delete(self, model_name: str, count: int, scope: str = ""):
        self.logger.warning(f"DELETE {model_name} x{count} {scope}".rstrip())

    def log_error(self, operation: str, error: Exception):
        self.logger.error(_format_error(f"DB ERROR in {operation}", error))


class WebSocketLogger:
    """Logging for the chat WebSocket endpoint"""

    def __init__(self, logger_name: str = "websocket"):
        self.logger = setup_logger(
            name=logger_name,
            log_file=f"{logger_name}.log"
        )

    def log_connect(self, user_id, claim_id):
        self.logger.info(f"🔗 CONNECT: user={user_id}, claim={claim_id}")

    def log_disconnect(self, user_id, claim_id):
        self.logger.info(f"🔌 DISCONNECT: user={user_id}, claim={claim_id}")

    def log_message(self, action: str, data: dict):
        self.logger.debug(
            f"📩 MESSAGE: action={action}\n{json.dumps(data, ensure_ascii=False, indent=2, default=str)}"
        )

    def log_error(self, context: str, error: Exception):
        self.logger.error(_format_error(f"❌ WS ERROR in {context}", error))


class ChatLogger:
    """Logging for chat sessions and the realtime feed"""

    def __init__(self, logger_name: str = "chat"):
        self.logger = setup_logger(
            name=logger_name,
            log_file=f"{logger_name}.log"
        )

    def log_publish(self, claim_id, message_id, subscribers: int):
        self.logger.debug(f"📡 PUBLISH: claim={claim_id}, message={message_id}, subscribers={subscribers}")

    def log_state(self, claim_id, user_id, state: str):
        self.logger.debug(f"🔁 STATE: claim={claim_id}, user={user_id}, state={state}")

    def log_error(self, context: str, error: Exception):
        self.logger.error(_format_error(f"❌ CHAT ERROR in {context}", error))


db_logger = DatabaseLogger()
ws_logger = WebSocketLogger()
chat_logger = ChatLogger()
app_logger = setup_logger("app", "app.log")
