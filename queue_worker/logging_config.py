import logging
import time

LEVEL_EMOJIS = {
    logging.DEBUG: "🐛",
    logging.INFO: "ℹ️",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "🔥",
}

# 워커 로그를 가리는 외부 라이브러리
NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg", "redis")

class EmojiFormatter(logging.Formatter):
    def format(self, record):
        record.levelemoji = LEVEL_EMOJIS.get(record.levelno, "🔍")
        return super().format(record)

def configure_logging(level: str = "INFO"):
    logging.Formatter.converter = time.localtime

    formatter = EmojiFormatter("[%(asctime)s] %(levelemoji)s [%(levelname)s] %(name)s - %(message)s")
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root_logger.handlers = [handler]  # 기존 핸들러 제거 후 설정

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
