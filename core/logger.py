"""
Logging per buffered-increments.

Log colorati su stdout per il worker, più una riga JSON di riepilogo per
ogni flush completato. Il contesto del flush (collezione + flush_id) viaggia
in un ContextVar, così ogni riga di log di un tentativo porta lo stesso ID.
"""
import logging
import json
import uuid
import sys
import contextvars
from typing import Optional, Dict, Any
from datetime import datetime, timezone

import colorlog

_flush_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('flush_context', default={})

# Librerie rumorose a INFO: APScheduler logga ogni esecuzione del job di flush
_QUIET_LOGGERS = ('apscheduler', 'sqlalchemy.engine', 'asyncio')


def setup_colored_logging(service_name: str = "flusher", level: int = logging.INFO):
    """
    Configura il root logger con un handler colorlog su stdout.

    Args:
        service_name: Nome del servizio mostrato in ogni riga
        level: Livello del root logger
    """
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(colorlog.ColoredFormatter(
        f'%(asctime)s %(log_color)s%(levelname)-8s%(reset)s %(cyan)s{service_name}%(reset)s '
        f'%(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        log_colors={
            'DEBUG': 'white',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        },
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def set_flush_context(collection: Optional[str] = None, flush_id: Optional[str] = None) -> str:
    """
    Imposta contesto del tentativo di flush per logging strutturato.

    Args:
        collection: Nome collezione documenti
        flush_id: ID correlazione del flush (genera se None)

    Returns:
        flush_id effettivamente impostato
    """
    if flush_id is None:
        flush_id = uuid.uuid4().hex[:12]

    context = {}
    if collection is not None:
        context["collection"] = collection
    context["flush_id"] = flush_id

    _flush_context.set(context)
    return flush_id


def get_flush_context() -> Dict[str, Any]:
    """
    Recupera contesto flush corrente.

    Returns:
        Dict con collection e flush_id
    """
    return _flush_context.get({})


def clear_flush_context() -> None:
    _flush_context.set({})


def log_with_context(level: str, message: str, **extra):
    """
    Log con prefisso [flush_id=...] [collection=...] dal contesto corrente.

    **extra va al logger (es. exc_info=True).
    """
    ctx = get_flush_context()
    prefix = "".join(f"[{name}={ctx[name]}] " for name in ("flush_id", "collection") if ctx.get(name))

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(f"{prefix}{message}", **extra)


def log_json(level: str, message: str, **fields):
    """
    Riga JSON unica con contesto del flush e metriche.

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        **fields: Metriche del flush (outcome, operations, matched, unmatched, failed, elapsed_ms)
    """
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level.upper(),
        "message": message,
        **get_flush_context(),
    }
    log_data.update({k: v for k, v in fields.items() if v is not None})

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(json.dumps(log_data, ensure_ascii=False, default=str))
