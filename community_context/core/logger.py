import logging
import os
from logging.handlers import RotatingFileHandler
from community_context.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 1024 * 1024 * 10
LOG_BACKUPS = 5


def format_extra(extra: dict) -> str:
    """Render structured context as `key=value` pairs in a stable order."""
    return ", ".join(f"{key}={extra[key]}" for key in sorted(extra))


class LoggerConfig:
    """
    Engine logger: console always, plus a rotating file under log_directory.

    Cache outcomes, call estimates and provider failures all go through `log`, with
    estimates passing their numbers in `extra` so they stay greppable.
    """
    def __init__(self, env=20, logger_name="COMMUNITY-CTX", log_directory="logs", log_file="community.log"):
        self.logger_name = logger_name
        self.log_directory = os.path.abspath(log_directory)
        self.log_file_path = os.path.join(self.log_directory, log_file)
        self.env = env
        self.logger = logging.getLogger(self.logger_name)
        self.setup_logger()

    def setup_logger(self):
        formatter = logging.Formatter(LOG_FORMAT)
        self.logger.setLevel(self.env)

        # Only this logger's own handlers count; a handler on the root logger must not
        # stop the engine from writing its file.
        if self.logger.handlers:
            return

        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.env)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        try:
            os.makedirs(self.log_directory, exist_ok=True)
            file_handler = RotatingFileHandler(
                self.log_file_path, backupCount=LOG_BACKUPS, maxBytes=MAX_LOG_BYTES, encoding="utf-8"
            )
        except OSError as e:
            self.logger.warning(f"File logging disabled, {self.log_file_path} is not writable: {str(e)}")
            return
        file_handler.setLevel(self.env)
        file_handler.setFormatter(formatter)
        self.logger.addHandler(file_handler)

    def log(self, level: int, message: str, extra: dict = None):
        if extra:
            message = f"{message} | {format_extra(extra)}"
        self.logger.log(level, message)

# Initialize Logger
logs = LoggerConfig(
    env=settings.LOGGER,
    logger_name="COMMUNITY-CTX",
    log_directory=settings.LOG_DIRECTORY,
    log_file=settings.LOG_FILE
)
