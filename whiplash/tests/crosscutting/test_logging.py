import io
import json
import logging

import pytest

from whiplash.crosscutting.logging import (
    CorrelationContext, SecretMasker, StructuredFormatter, log_error,
    log_playlist_scanned, log_scan_complete, log_scan_start, log_with_fields,
    playlist_id_var, scan_id_var, setup_logging, stage_var
)


class TestSecretMasker:
    """Tests for secret masking functionality."""

    def setup_method(self):
        self.masker = SecretMasker()

    def test_mask_access_token(self):
        masked = self.masker.mask_secrets("access_token=abcdefghijklmnop")
        assert masked == "access_token: abcd********mnop"

    def test_mask_cookie_token(self):
        masked = self.masker.mask_secrets("sp_refresh_token: AQDxyz1234567890abcd")
        assert masked.startswith("sp_refresh_token: AQDx")
        assert masked.endswith("abcd")
        assert "AQDxyz1234567890abcd" not in masked

    def test_mask_client_secret(self):
        text = "client_secret: my_super_secret_key_12345"
        masked = self.masker.mask_secrets(text)
        assert masked == "client_secret: my_s*****************2345"

    def test_mask_oauth_state(self):
        masked = self.masker.mask_secrets("state=0123456789abcdef0123456789abcdef")
        assert "0123456789abcdef0123456789abcdef" not in masked

    def test_plain_text_untouched(self):
        text = "Playlist scanned with 42 items"
        assert self.masker.mask_secrets(text) == text
        assert self.masker.mask_secrets("") == ""

    def test_mask_dict_nested(self):
        data = {
            'count': 3,
            'auth': {'token': 'token=abcdefghijklmnop'},
            'items': ['secret=zyxwvutsrqponmlk', 7],
        }
        masked = self.masker.mask_dict(data)

        assert masked['count'] == 3
        assert 'abcdefghijklmnop' not in masked['auth']['token']
        assert 'zyxwvutsrqponmlk' not in masked['items'][0]
        assert masked['items'][1] == 7


class TestCorrelationContext:
    """Tests for correlation context variables."""

    def test_sets_and_resets(self):
        assert scan_id_var.get() is None

        with CorrelationContext(scan_id="scan_1", stage="fetch"):
            assert scan_id_var.get() == "scan_1"
            assert stage_var.get() == "fetch"
            with CorrelationContext(playlist_id="p1", stage="playlist"):
                assert scan_id_var.get() == "scan_1"
                assert playlist_id_var.get() == "p1"
                assert stage_var.get() == "playlist"
            assert playlist_id_var.get() is None
            assert stage_var.get() == "fetch"

        assert scan_id_var.get() is None
        assert stage_var.get() is None


class TestStructuredLogging:
    """Tests for the JSON formatter and logging helpers."""

    def setup_method(self):
        self.stream = io.StringIO()
        self.logger = logging.getLogger('whiplash.tests.structured')
        self.logger.handlers.clear()
        self.logger.propagate = False
        self.logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)

    def teardown_method(self):
        self.logger.handlers.clear()

    def _entries(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line]

    def test_formats_json_with_correlation(self):
        with CorrelationContext(scan_id="scan_9", playlist_id="p3"):
            self.logger.info("hello access_token=abcdefghijklmnop")

        entry = self._entries()[0]
        assert entry['level'] == 'INFO'
        assert entry['logger'] == 'whiplash.tests.structured'
        assert entry['scanId'] == 'scan_9'
        assert entry['playlistId'] == 'p3'
        assert 'abcdefghijklmnop' not in entry['message']
        assert entry['ts'].endswith('Z')

    def test_log_with_fields(self):
        log_with_fields(self.logger, 'WARNING', 'with fields', {'a': 1}, b='two')

        entry = self._entries()[0]
        assert entry['level'] == 'WARNING'
        assert entry['fields'] == {'a': 1, 'b': 'two'}

    def test_log_with_fields_respects_level(self):
        self.logger.setLevel(logging.ERROR)
        log_with_fields(self.logger, 'INFO', 'dropped')
        assert self._entries() == []

    def test_scan_lifecycle_helpers(self):
        log_scan_start(self.logger, "scan_1", 3)
        log_playlist_scanned(self.logger, "p1", 10, 8, 2, name="Road trip")
        log_scan_complete(self.logger, "scan_1", 3, 12, 40)

        start, playlist, complete = self._entries()
        assert start['stage'] == 'start'
        assert start['fields'] == {'playlist_count': 3}
        assert playlist['playlistId'] == 'p1'
        assert playlist['fields']['skipped_count'] == 2
        assert playlist['fields']['name'] == 'Road trip'
        assert complete['fields']['total_unique_tracks'] == 40
        assert complete['scanId'] == 'scan_1'

    def test_log_error_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            log_error(self.logger, "Scan failed", e, scan_id="scan_1")

        entry = self._entries()[0]
        assert entry['level'] == 'ERROR'
        assert entry['fields']['error_type'] == 'ValueError'
        assert entry['fields']['error_message'] == 'boom'
        assert 'ValueError: boom' in entry['exception']


class TestSetupLogging:
    """Tests for logger configuration."""

    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        logger = logging.getLogger('whiplash')
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = handlers
        logger.setLevel(level)

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "whiplash.log"
        logger = setup_logging('DEBUG', str(log_file))

        assert logger is logging.getLogger('whiplash')
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

        logging.getLogger('whiplash.sub').debug("to the file")
        for handler in logger.handlers:
            handler.flush()
        assert json.loads(log_file.read_text().splitlines()[0])['message'] == "to the file"

    def test_setup_logging_replaces_handlers(self):
        setup_logging('INFO')
        setup_logging('WARNING')

        logger = logging.getLogger('whiplash')
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
