"""Settings library for sync and authentication configurations.

Provides:
    - Schema validation and enforcement for the config.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Resolution of the app-data paths for credentials and the local entity store.
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ConsultingTracker'

SYNC_KEYS: List[str] = [
    'debounce_seconds',
    'auth_timeout',
    'document_title',
    'max_retries',
]

CONFIG_SCHEMA: Dict[str, Any] = {
    'sync': {
        'type': dict,
        'required': True,
        'required_keys': SYNC_KEYS,
        'item_schema': {
            'debounce_seconds': {'type': (int, float), 'required': True, 'min': 0},
            'auth_timeout': {'type': int, 'required': True, 'min': 1},
            'document_title': {'type': str, 'required': True, 'non_empty': True},
            'max_retries': {'type': int, 'required': True, 'min': 1},
        }
    },
}


def _validate_items(section: str, section_dict: Dict[str, Any], specs: Dict[str, Any]) -> None:
    """Validate the keys of a config section against its item schema.

    Args:
        section: Name of the section, used in error messages.
        section_dict: The section data.
        specs: Schema dict containing 'required_keys' and 'item_schema'.

    Raises:
        ValueError: If a required key is missing, a value is out of range, or a string is empty.
        TypeError: If a value is not of the expected type.
    """
    logging.debug(f'Validating "{section}" section.')
    missing = [k for k in specs.get('required_keys', []) if k not in section_dict]
    if missing:
        msg: str = f'"{section}" is missing required keys: {missing}.'
        logging.error(msg)
        raise ValueError(msg)

    for key, item_specs in specs.get('item_schema', {}).items():
        if key not in section_dict:
            continue
        value = section_dict[key]
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, item_specs['type']):
            msg = f'"{section}.{key}" must be {item_specs["type"]}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)
        if 'min' in item_specs and value < item_specs['min']:
            msg = f'"{section}.{key}" must be >= {item_specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)
        if item_specs.get('non_empty') and not value.strip():
            msg = f'"{section}.{key}" must not be empty.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    This class initializes paths for configuration templates, credentials and the local
    entity store. It verifies the presence of template assets and prepares default
    configuration files by copying them into the user data directory.
    """

    def __init__(self) -> None:
        """Set up application paths and ensure required directories and templates exist."""
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_secret_template: pathlib.Path = self.template_dir / 'client_secret.json.template'
        self.config_template: pathlib.Path = self.template_dir / 'config.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.config_path: pathlib.Path = self.config_dir / 'config.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'store.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify templates exist and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If required template directory or file is missing.
        """
        logging.debug(f'Verifying required directories and templates in {self.template_dir}')
        if not self.template_dir.exists():
            msg: str = f'Missing template directory: {self.template_dir}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.client_secret_template.exists():
            msg = f'Missing client_secret template: {self.client_secret_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.config_template.exists():
            msg = f'Missing config template: {self.config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for directory in (self.config_dir, self.auth_dir, self.db_dir):
            if not directory.exists():
                logging.debug(f'Creating directory: {directory}')
                directory.mkdir(parents=True, exist_ok=True)

        if not self.client_secret_path.exists():
            logging.debug(f'Copying default client_secret from template to {self.client_secret_path}')
            shutil.copy(self.client_secret_template, self.client_secret_path)
        if not self.config_path.exists():
            logging.debug(f'Copying default config from template to {self.config_path}')
            shutil.copy(self.config_template, self.config_path)

    def revert_config_to_template(self) -> None:
        """Restore config.json from the default template file.

        Raises:
            FileNotFoundError: If the config template file is missing.
        """
        logging.debug(f'Reverting config to template: {self.config_template}')
        if not self.config_template.exists():
            msg: str = f'Config template not found: {self.config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        shutil.copy(self.config_template, self.config_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save config.json sections and client_secret.json.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, config_path: Optional[str] = None, client_secret_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load config and client_secret data.

        Args:
            config_path: Optional path to a custom config.json file.
            client_secret_path: Optional path to a custom client_secret.json file.
        """
        super().__init__()

        self.config_path: pathlib.Path = pathlib.Path(config_path) if config_path else self.config_path
        self.client_secret_path: pathlib.Path = (
            pathlib.Path(client_secret_path)
            if client_secret_path
            else self.client_secret_path
        )

        self.config_data: Dict[str, Any] = {k: {} for k in CONFIG_SCHEMA}
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a sync setting using dictionary-style access.

        Raises:
            KeyError: If key is not in SYNC_KEYS.
        """
        if key not in SYNC_KEYS:
            raise KeyError(f'Invalid sync key: {key}, must be one of {SYNC_KEYS}')
        return self.config_data['sync'].get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a sync setting using dictionary-style access and persist it.

        Raises:
            KeyError: If key is not in SYNC_KEYS.
        """
        if key not in SYNC_KEYS:
            raise KeyError(f'Invalid sync key: {key}, must be one of {SYNC_KEYS}')

        section = self.get_section('sync')
        section[key] = value
        self.set_section('sync', section)

    def init_data(self) -> None:
        """Reload config and client_secret data from disk."""
        self.load_config()
        self.load_client_secret()

    def load_config(self) -> Dict[str, Any]:
        """Load config.json from disk and validate against schema.

        Returns:
            The loaded config data dictionary.

        Raises:
            status.ConfigNotFoundException: If config.json file is missing.
            status.ConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading config from "{self.config_path}"')
        if not self.config_path.exists():
            raise status.ConfigNotFoundException

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data=data)
        except status.ConfigInvalidException:
            raise
        except (ValueError, TypeError, RuntimeError) as ex:
            raise status.ConfigInvalidException(str(ex)) from ex

        self.config_data = data
        return self.config_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk.

        The template ships without real OAuth values, so the contents are only validated when
        an interactive sign-in actually needs them.

        Returns:
            The loaded client secret data dictionary.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If the file is not valid JSON.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                self.client_secret_data = json.load(f)
        except json.JSONDecodeError as ex:
            raise status.ClientSecretInvalidException from ex
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid client_secret section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        logging.debug(f'Found "{key}" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [
            k for k in self.required_client_secret_keys
            if k not in config_section or not config_section[k]
        ]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def validate_config_data(self, data: Dict[str, Any] = None) -> None:
        """Validate config data against the defined CONFIG_SCHEMA.

        Args:
            data (dict, optional): Config data to validate. Defaults to self.config_data.

        Raises:
            RuntimeError: If data is empty.
            status.ConfigInvalidException: If a required section is missing or validation fails.
        """
        if data is None:
            data = self.config_data
        if not data:
            raise RuntimeError('Config data is empty.')

        logging.debug('Validating config data against schema.')
        for field, specs in CONFIG_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.ConfigInvalidException(f'Missing required field: {field}')

            if field not in data:
                continue

            if not isinstance(data[field], specs['type']):
                raise status.ConfigInvalidException(
                    f'Field "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )

            _validate_items(field, data[field], specs)

        logging.debug('Config data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of configuration data for a config or client_secret section.

        Raises:
            KeyError: If section_name is not in config_data.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()

        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        Args:
            section_name: Section to update ('client_secret' or config key).
            new_data: New data dict for the section.

        Raises:
            ValueError: If section_name is unrecognized or the new data fails validation.
            TypeError: If a value has the wrong type.
        """
        if section_name == 'client_secret':
            logging.debug('Setting entire client_secret data.')
            self.validate_client_secret(new_data)
            self.client_secret_data = new_data
            self.save_section('client_secret')
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        _validate_items(section_name, new_data, CONFIG_SCHEMA[section_name])
        self.config_data[section_name] = new_data
        self.save_section(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is invalid or not present in the template.
        """
        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        if section_name not in template_data:
            msg = f'No template-based revert logic for section "{section_name}".'
            logging.error(msg)
            raise ValueError(msg)

        self.config_data[section_name] = template_data[section_name]
        self.save_section(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to its corresponding file.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name == 'client_secret':
            logging.debug(f'Saving client_secret to "{self.client_secret_path}"')
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.config_data[section_name]

        with self.config_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
