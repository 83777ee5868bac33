import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
scan_id_var: ContextVar[Optional[str]] = ContextVar('scan_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        self.patterns = [
            # Access/refresh tokens and session cookies
            r'(?i)(sp_access_token|sp_refresh_token|access_token|refresh_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Generic tokens and keys
            r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Client secrets
            r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # OAuth codes and state
            r'(?i)(code|authorization_code|state)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]

        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text

        for pattern in self.compiled_patterns:
            def replace_match(match):
                prefix = match.group(1)
                secret = match.group(2)
                # Keep first 4 and last 4 characters
                if len(secret) > 8:
                    masked_secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
                else:
                    masked_secret = '*' * len(secret)
                return f"{prefix}: {masked_secret}"

            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}

        for key, value in data.items():
            if isinstance(value, str):
                masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        scan_id = scan_id_var.get()
        playlist_id = playlist_id_var.get()
        stage = stage_var.get()

        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if scan_id:
            log_entry['scanId'] = scan_id
        if playlist_id:
            log_entry['playlistId'] = playlist_id
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'fields') and record.fields:
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False)

    def mask_secrets(self, text: str) -> str:
        return self.masker.mask_secrets(text)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, scan_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self.scan_id = scan_id
        self.playlist_id = playlist_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        if self.scan_id is not None:
            self._tokens.append((scan_id_var, scan_id_var.set(self.scan_id)))
        if self.playlist_id is not None:
            self._tokens.append((playlist_id_var, playlist_id_var.set(self.playlist_id)))
        if self.stage is not None:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  scan_id: Optional[str] = None) -> logging.Logger:
    """Setup structured logging on the 'whiplash' logger tree."""
    logger = logging.getLogger('whiplash')
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if scan_id:
        scan_id_var.set(scan_id)

    return logger


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, '', 0, message, (),
        sys.exc_info() if exc_info else None
    )

    merged: Dict[str, Any] = {}
    if fields:
        merged.update(fields)
    if kwargs:
        merged.update(kwargs)
    if merged:
        record.fields = merged

    logger.handle(record)


def log_scan_start(logger: logging.Logger, scan_id: str, playlist_count: int, **kwargs):
    """Log scan start."""
    with CorrelationContext(scan_id=scan_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Scan started', {
            'playlist_count': playlist_count,
            **kwargs
        })


def log_playlist_scanned(logger: logging.Logger, playlist_id: str, item_count: int,
                         accepted_count: int, skipped_count: int, **kwargs):
    """Log completion of one playlist."""
    with CorrelationContext(playlist_id=playlist_id, stage='playlist'):
        log_with_fields(logger, 'INFO', 'Playlist scanned', {
            'item_count': item_count,
            'accepted_count': accepted_count,
            'skipped_count': skipped_count,
            **kwargs
        })


def log_scan_complete(logger: logging.Logger, scan_id: str, total_playlists: int,
                      total_artists: int, total_unique_tracks: int, **kwargs):
    """Log scan completion."""
    with CorrelationContext(scan_id=scan_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Scan completed', {
            'total_playlists': total_playlists,
            'total_artists': total_artists,
            'total_unique_tracks': total_unique_tracks,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
