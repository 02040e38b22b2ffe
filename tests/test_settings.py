# tests/test_settings.py
"""
Unit tests for ConsultingTracker.settings.lib
(covers the validators, ConfigPaths, and SettingsAPI).

Run with:
    python -m unittest tests.test_settings
"""
import json
import unittest
from pathlib import Path
from typing import Any, Dict

from ConsultingTracker.settings import lib
from ConsultingTracker.settings.lib import CONFIG_SCHEMA, SettingsAPI, _validate_items
from ConsultingTracker.status import status
from tests.base import BaseTestCase

SYNC_FIXTURE: Dict[str, Any] = {
    'debounce_seconds': 2.0,
    'auth_timeout': 120,
    'document_title': 'Consulting Tracker Backup',
    'max_retries': 4,
}
DUMMY_SECRET = {
    'installed': {
        'client_id': 'dummy',
        'project_id': 'dummy',
        'client_secret': 'dummy',
        'auth_uri': 'https://example',
        'token_uri': 'https://example',
    }
}


def write_json(p: Path, data: Dict[str, Any]) -> None:
    with p.open('w', encoding='utf-8') as f:
        json.dump(data, f, indent=4, ensure_ascii=False)


class ValidatorTests(unittest.TestCase):
    specs = CONFIG_SCHEMA['sync']

    def test_valid_section(self):
        _validate_items('sync', dict(SYNC_FIXTURE), self.specs)
        _validate_items('sync', dict(SYNC_FIXTURE, debounce_seconds=0), self.specs)

    def test_missing_key(self):
        data = dict(SYNC_FIXTURE)
        data.pop('document_title')
        with self.assertRaises(ValueError) as cm:
            _validate_items('sync', data, self.specs)
        self.assertIn('document_title', str(cm.exception))

    def test_wrong_types(self):
        for key, value in (
                ('debounce_seconds', '2'),
                ('auth_timeout', 1.5),
                ('max_retries', True),
                ('document_title', 42),
        ):
            with self.subTest(key=key):
                with self.assertRaises(TypeError):
                    _validate_items('sync', dict(SYNC_FIXTURE, **{key: value}), self.specs)

    def test_out_of_range(self):
        for key, value in (('debounce_seconds', -1), ('auth_timeout', 0), ('max_retries', 0),
                           ('document_title', '   ')):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    _validate_items('sync', dict(SYNC_FIXTURE, **{key: value}), self.specs)


class RealTemplateSmokeTest(BaseTestCase):
    def test_templates_exist(self):
        paths = lib.ConfigPaths()
        self.assertTrue(paths.client_secret_template.exists())
        self.assertTrue(paths.config_template.exists())

    def test_directories_prepared(self):
        paths = lib.ConfigPaths()
        for p in (paths.config_dir, paths.auth_dir, paths.db_dir, paths.config_path, paths.client_secret_path):
            self.assertTrue(p.exists(), p)
        self.assertEqual(paths.db_path.parent, paths.db_dir)
        self.assertEqual(paths.creds_path.parent, paths.auth_dir)


class SettingsAPIBehaviour(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.api = SettingsAPI()

    def test_template_defaults(self):
        self.assertEqual(self.api.get_section('sync'), SYNC_FIXTURE)
        self.assertEqual(self.api['document_title'], 'Consulting Tracker Backup')

    def test_getitem_setitem(self):
        self.api['debounce_seconds'] = 0.5
        self.assertEqual(self.api['debounce_seconds'], 0.5)
        self.assertEqual(SettingsAPI()['debounce_seconds'], 0.5)

        with self.assertRaises(KeyError):
            self.api['unknown']
        with self.assertRaises(KeyError):
            self.api['unknown'] = 1

    def test_set_section_invalid_value_keeps_previous(self):
        with self.assertRaises(ValueError):
            self.api.set_section('sync', dict(SYNC_FIXTURE, max_retries=0))
        self.assertEqual(self.api['max_retries'], 4)
        self.assertEqual(SettingsAPI()['max_retries'], 4)

    def test_set_section_unknown(self):
        with self.assertRaises(ValueError):
            self.api.set_section('reports', {})

    def test_revert_section(self):
        self.api['document_title'] = 'Other'
        self.api.revert_section('sync')
        self.assertEqual(self.api['document_title'], 'Consulting Tracker Backup')
        with self.assertRaises(ValueError):
            self.api.revert_section('reports')

    def test_save_section_unknown(self):
        with self.assertRaises(ValueError):
            self.api.save_section('nope')

    def test_missing_config(self):
        self.api.config_path.unlink()
        with self.assertRaises(status.ConfigNotFoundException):
            self.api.load_config()

    def test_invalid_config(self):
        self.api.config_path.write_text('{not json', encoding='utf-8')
        with self.assertRaises(status.ConfigInvalidException):
            self.api.load_config()

        write_json(self.api.config_path, {'sync': dict(SYNC_FIXTURE, auth_timeout='soon')})
        with self.assertRaises(status.ConfigInvalidException):
            self.api.load_config()

        write_json(self.api.config_path, {})
        with self.assertRaises(status.ConfigInvalidException):
            self.api.load_config()

    def test_revert_config_to_template(self):
        write_json(self.api.config_path, {'sync': dict(SYNC_FIXTURE, document_title='Mine')})
        self.api.revert_config_to_template()
        self.assertEqual(self.api.load_config()['sync'], SYNC_FIXTURE)

    def test_validate_client_secret_missing_section(self):
        with self.assertRaises(status.ClientSecretInvalidException):
            self.api.validate_client_secret({'other': {}})

    def test_validate_client_secret_missing_fields(self):
        # The shipped template has empty values
        with self.assertRaises(status.ClientSecretInvalidException):
            self.api.validate_client_secret()

        data = json.loads(json.dumps(DUMMY_SECRET))
        data['installed'].pop('token_uri')
        with self.assertRaises(status.ClientSecretInvalidException):
            self.api.validate_client_secret(data)

    def test_client_secret_set_and_reload(self):
        self.api.set_section('client_secret', DUMMY_SECRET)
        self.assertEqual(self.api.validate_client_secret(), 'installed')
        self.assertEqual(SettingsAPI().get_section('client_secret'), DUMMY_SECRET)

    def test_client_secret_invalid_json(self):
        self.api.client_secret_path.write_text('nope', encoding='utf-8')
        with self.assertRaises(status.ClientSecretInvalidException):
            self.api.load_client_secret()

    def test_client_secret_missing(self):
        self.api.client_secret_path.unlink()
        with self.assertRaises(status.ClientSecretNotFoundException):
            self.api.load_client_secret()
