import os
import yaml
import keyring

from settings_schema import validate_settings

APP_VERSION = "1.0.0"


class YamlConfig:
    """Validated settings backed by a YAML file.

    With ``ENCRYPT_SETTINGS=1`` the API token is kept in the OS keyring and
    the file only records that a token exists.
    """

    SENSITIVE_KEYS = {"api_token"}
    KEYRING_SERVICE = "coach-badges"

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.use_keyring = os.environ.get("ENCRYPT_SETTINGS") == "1"

    def _read_file(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a settings mapping")
        return data

    def load(self) -> dict:
        """Return the settings with defaults applied; raises ``ValueError`` if invalid."""
        data = self._read_file()
        if self.use_keyring:
            for key in self.SENSITIVE_KEYS & data.keys():
                secret = keyring.get_password(self.KEYRING_SERVICE, key)
                if secret is None:
                    del data[key]
                else:
                    data[key] = secret
        return validate_settings(data)

    def save(self, data: dict) -> None:
        out = validate_settings(data)
        if self.use_keyring:
            for key in self.SENSITIVE_KEYS:
                if out.get(key):
                    keyring.set_password(self.KEYRING_SERVICE, key, out[key])
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)
