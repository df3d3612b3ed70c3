import os
import sys
import unittest
import keyring
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import ConnectionSettings, YamlConfig, load_connection_settings
from exceptions import ConfigurationError
from settings_schema import validate_settings

class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1
    def __init__(self):
        self.store = {}
    def get_password(self, service, username):
        return self.store.get((service, username))
    def set_password(self, service, username, password):
        self.store[(service, username)] = password
    def delete_password(self, service, username):
        self.store.pop((service, username), None)

class SettingsEncryptionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.keyring = DummyKeyring()
        keyring.set_keyring(self.keyring)
        os.environ['ENCRYPT_SETTINGS'] = '1'
        self.path = 'enc_session.yaml'
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop('ENCRYPT_SETTINGS', None)

    def test_encrypt_and_load(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'access_token': 'secret', 'expires_at': '2030-01-01T00:00:00'})
        self.assertTrue(os.path.exists(self.path))
        with open(self.path, encoding='utf-8') as f:
            self.assertNotIn('secret', f.read())
        data = cfg.load()
        self.assertEqual(data['access_token'], 'secret')
        self.assertEqual(data['expires_at'], '2030-01-01T00:00:00')

    def test_clear_removes_secret(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'access_token': 'secret'})
        cfg.clear()
        self.assertFalse(os.path.exists(self.path))
        self.assertEqual(self.keyring.store, {})
        self.assertEqual(cfg.load(), {})

class ConnectionSettingsTest(unittest.TestCase):
    def test_missing_names_every_variable(self) -> None:
        settings = ConnectionSettings(None, '')
        with self.assertRaises(ConfigurationError) as ctx:
            settings.require()
        self.assertIn('LIFTPLAN_API_URL', str(ctx.exception))
        self.assertIn('LIFTPLAN_API_KEY', str(ctx.exception))

    def test_env_loading(self) -> None:
        os.environ['LIFTPLAN_API_URL'] = 'http://localhost:8000/'
        os.environ['LIFTPLAN_API_KEY'] = 'key'
        try:
            settings = load_connection_settings()
        finally:
            os.environ.pop('LIFTPLAN_API_URL')
            os.environ.pop('LIFTPLAN_API_KEY')
        self.assertEqual(settings.url, 'http://localhost:8000')
        self.assertEqual(settings.missing, [])
        settings.require()

    def test_validate_settings(self) -> None:
        self.assertEqual(validate_settings({}).default_sets, 3)
        self.assertEqual(validate_settings({'default_reps': 5}).default_reps, 5)
        with self.assertRaises(ValueError):
            validate_settings({'default_sets': -1})
        with self.assertRaises(ValueError):
            validate_settings({'dashboard_recent_limit': 0})
