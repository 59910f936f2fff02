#!/usr/bin/env python3
import sys
import logging
import secrets

LOG_FORMAT = '[%(asctime)s] %(message)s'
LOG_DATEFMT = '%H:%M:%S'


# --- Logger ---
class _BelowLevel(logging.Filter):
    def __init__(self, level):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


def create_logger(log_file, name='shotdrop', level=logging.INFO):
    """
    Builds the uploader logger: every line is appended to `log_file` and
    mirrored to the console, errors going to stderr instead of stdout.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # Prevent this logger from propagating to the root logger to avoid double lines
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    out_handler = logging.StreamHandler(sys.stdout)
    out_handler.setFormatter(formatter)
    out_handler.addFilter(_BelowLevel(logging.ERROR))
    logger.addHandler(out_handler)

    err_handler = logging.StreamHandler(sys.stderr)
    err_handler.setFormatter(formatter)
    err_handler.setLevel(logging.ERROR)
    logger.addHandler(err_handler)

    return logger


# --- Identifier generation ---

def generate_id(alphabet, length):
    """Returns `length` characters drawn uniformly from `alphabet`."""
    if not alphabet:
        raise ValueError("Alphabet must not be empty.")
    if len(set(alphabet)) != len(alphabet):
        raise ValueError("Alphabet must not contain duplicate characters.")
    if length < 1:
        raise ValueError(f"Length must be at least 1, got {length}.")
    return ''.join(secrets.choice(alphabet) for _ in range(length))
