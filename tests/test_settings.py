import os
import sys
import unittest
import keyring
import yaml
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
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
        keyring.set_keyring(DummyKeyring())
        os.environ['ENCRYPT_SETTINGS'] = '1'
        self.path = 'enc_settings.yaml'
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop('ENCRYPT_SETTINGS', None)

    def test_encrypt_and_load(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'api_token': 'secret', 'log_level': 'DEBUG'})
        with open(self.path, encoding='utf-8') as f:
            raw = yaml.safe_load(f)
        self.assertIs(raw['api_token'], True)
        self.assertEqual(cfg.load(), {'log_level': 'DEBUG', 'api_token': 'secret'})

    def test_missing_secret_falls_back_to_default(self) -> None:
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump({'api_token': True}, f)
        self.assertEqual(YamlConfig(self.path).load()['api_token'], '')

    def test_empty_token_not_sent_to_keyring(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({'log_level': 'error'})
        with open(self.path, encoding='utf-8') as f:
            raw = yaml.safe_load(f)
        self.assertEqual(raw, {'log_level': 'ERROR', 'api_token': ''})
        self.assertIsNone(keyring.get_password(YamlConfig.KEYRING_SERVICE, 'api_token'))


class SettingsSchemaTest(unittest.TestCase):
    def test_defaults(self) -> None:
        self.assertEqual(validate_settings({}), {'log_level': 'INFO', 'api_token': ''})
        self.assertEqual(YamlConfig('missing_settings.yaml').load()['log_level'], 'INFO')

    def test_log_level_normalised(self) -> None:
        self.assertEqual(validate_settings({'log_level': 'warning'})['log_level'], 'WARNING')

    def test_invalid_values(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings({'log_level': 'LOUD'})
        with self.assertRaises(ValueError):
            validate_settings({'api_token': ['a']})

    def test_file_values_validated(self) -> None:
        path = 'bad_settings.yaml'
        try:
            with open(path, 'w', encoding='utf-8') as f:
                f.write('- not\n- a mapping\n')
            with self.assertRaises(ValueError):
                YamlConfig(path).load()
            with self.assertRaises(ValueError):
                YamlConfig(path).save({'log_level': 'LOUD'})
        finally:
            if os.path.exists(path):
                os.remove(path)


if __name__ == '__main__':
    unittest.main()
