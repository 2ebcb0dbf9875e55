"""Process-wide logging configuration shared by the API server and the CLI."""
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# urllib3/httpx/httpcore log every TCP connection; faiss logs loader chatter.
# None of these are useful when debugging the pipeline.
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "faiss",
    "faiss.loader",
)


def configure_logging(level: str = "info") -> None:
    """Configure the root logger and silence verbose third-party loggers."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    configured_level = getattr(logging, level.upper(), None)
    if isinstance(configured_level, int):
        logging.getLogger().setLevel(configured_level)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
