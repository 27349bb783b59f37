import json
import logging
import os
import tempfile
from unittest.mock import Mock

from mshuffle.crosscutting.logging import (
    CorrelationContext, SecretMasker, StructuredFormatter, SESSION_ID_PREFIX,
    log_error, log_session_created, log_transition, log_with_fields, playlist_id_var,
    session_id_var, setup_logging, stage_var,
)


def _record(message='Test message', fields=None, exc_info=None):
    record = Mock()
    record.levelname = 'INFO'
    record.name = 'test_logger'
    record.getMessage.return_value = message
    record.module = 'test_module'
    record.funcName = 'test_function'
    record.lineno = 42
    record.exc_info = exc_info
    record.fields = fields
    return record


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestSecretMasker:
    """Tests for SecretMasker class."""

    def setup_method(self):
        self.masker = SecretMasker()

    def test_mask_token(self):
        masked = self.masker.mask_secrets('API token: secret123456')

        assert masked == 'API token: secr****3456'

    def test_mask_access_token(self):
        masked = self.masker.mask_secrets('access_token=BQDx7abcdefghijklmnopqrstu')

        assert 'BQDx7abcdefghijklmnopqrstu' not in masked

    def test_mask_client_secret(self):
        masked = self.masker.mask_secrets('client_secret: my_super_secret_key_12345')

        assert 'my_super_secret_key_12345' not in masked

    def test_plain_text_unchanged(self):
        assert self.masker.mask_secrets('Listening session created') == 'Listening session created'
        assert self.masker.mask_secrets('') == ''

    def test_mask_dict(self):
        masked = self.masker.mask_dict({
            'message': 'token: abcdefghijklmnop',
            'nested': {'note': 'code=abcdefghijklmnopqrstuvwxyz'},
            'items': ['secret: 1234567890abc', 3],
            'count': 3,
        })

        assert 'abcdefghijklmnop' not in masked['message']
        assert 'abcdefghijklmnopqrstuvwxyz' not in masked['nested']['note']
        assert '1234567890abc' not in masked['items'][0]
        assert masked['items'][1] == 3
        assert masked['count'] == 3


class TestStructuredFormatter:
    """Tests for StructuredFormatter class."""

    def setup_method(self):
        self.formatter = StructuredFormatter()

    def test_basic_format(self):
        data = json.loads(self.formatter.format(_record()))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'test_logger'
        assert data['message'] == 'Test message'
        assert data['line'] == 42
        assert data['ts'].endswith('Z')
        assert 'sessionId' not in data

    def test_format_with_correlation(self):
        with CorrelationContext(session_id='x' * 88, playlist_id='p1', stage='next'):
            data = json.loads(self.formatter.format(_record()))

        assert data['sessionId'] == 'x' * SESSION_ID_PREFIX
        assert data['playlistId'] == 'p1'
        assert data['stage'] == 'next'

    def test_format_with_fields(self):
        data = json.loads(self.formatter.format(_record(fields={'track_id': 't1'})))

        assert data['fields'] == {'track_id': 't1'}

    def test_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError as e:
            record = _record(exc_info=(ValueError, e, e.__traceback__))

        data = json.loads(self.formatter.format(record))

        assert 'ValueError' in data['exception']
        assert 'Test error' in data['exception']


class TestCorrelationContext:
    """Tests for correlation context management."""

    def test_sets_and_restores(self):
        with CorrelationContext(session_id='s1', playlist_id='p1'):
            assert session_id_var.get() == 's1'
            assert playlist_id_var.get() == 'p1'
            with CorrelationContext(stage='enjoy'):
                assert stage_var.get() == 'enjoy'
                assert session_id_var.get() == 's1'
            assert stage_var.get() is None

        assert session_id_var.get() is None
        assert playlist_id_var.get() is None


class TestLoggingHelpers:
    """Tests for logging setup and helper functions."""

    def setup_method(self):
        self.logger = logging.getLogger('mshuffle.tests.helpers')
        self.logger.setLevel(logging.DEBUG)
        self.handler = CapturingHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_setup_logging_writes_json_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = os.path.join(temp_dir, 'mshuffle.log')
            logger = setup_logging('DEBUG', log_file)
            try:
                logging.getLogger('mshuffle.engine').info('hello')
                for handler in logger.handlers:
                    handler.flush()

                with open(log_file) as f:
                    data = json.loads(f.readline())
            finally:
                for handler in list(logger.handlers):
                    handler.close()
                logger.handlers.clear()

        assert logger.name == 'mshuffle'
        assert logger.level == logging.DEBUG
        assert data['message'] == 'hello'
        assert data['logger'] == 'mshuffle.engine'

    def test_log_with_fields(self):
        log_with_fields(self.logger, 'INFO', 'Loaded', {'track_count': 3}, source='local')

        record = self.handler.records[0]
        assert record.getMessage() == 'Loaded'
        assert record.fields == {'track_count': 3, 'source': 'local'}

    def test_log_with_fields_respects_level(self):
        self.logger.setLevel(logging.WARNING)

        log_with_fields(self.logger, 'INFO', 'Quiet')

        assert self.handler.records == []

    def test_log_session_created(self):
        log_session_created(self.logger, 'session-id', 'p1', 12, features=['History'])

        record = self.handler.records[0]
        assert record.fields == {'track_count': 12, 'features': ['History']}

    def test_log_transition_is_debug(self):
        log_transition(self.logger, 'session-id', 'next', track_id='t1')

        record = self.handler.records[0]
        assert record.levelno == logging.DEBUG
        assert record.getMessage() == 'Applied next'
        assert record.fields == {'track_id': 't1'}

    def test_log_error(self):
        try:
            raise RuntimeError('broken')
        except RuntimeError as e:
            log_error(self.logger, 'Failed', e, step='load')

        record = self.handler.records[0]
        assert record.levelno == logging.ERROR
        assert record.fields['error_type'] == 'RuntimeError'
        assert record.fields['step'] == 'load'
        assert record.exc_info is not None
