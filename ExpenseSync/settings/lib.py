"""Settings library for the client configuration.

Provides:
    - Schema validation and enforcement for client.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Application file paths (config, session, cache database, logs).
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ExpenseSync'

DATE_RANGES: List[str] = ['current-month', 'last-week', 'last-month', 'all-time']

METADATA_KEYS: List[str] = [
    'locale',
    'date_range',
]

CLIENT_SCHEMA: Dict[str, Any] = {
    'api': {
        'type': dict,
        'required': True,
        'item_schema': {
            'base_url': {'type': str, 'required': True},
            'timeout': {'type': (int, float), 'required': True, 'min': 1},
            'retries': {'type': int, 'required': True, 'min': 0},
        }
    },
    'sync': {
        'type': dict,
        'required': True,
        'item_schema': {
            'threshold': {'type': (int, float), 'required': True, 'min': 0},
            'sync_on_startup': {'type': bool, 'required': True},
            'start_online': {'type': bool, 'required': True},
        }
    },
    'metadata': {
        'type': dict,
        'required': True,
        'item_schema': {
            'locale': {'type': str, 'required': True},
            'date_range': {'type': str, 'required': True, 'allowed_values': DATE_RANGES},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one section of the client configuration.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section's data.
        item_schema: Mapping of field names to their type, requirement and range rules.

    Raises:
        TypeError: If the section is not a dict or a field has the wrong type.
        ValueError: If a required field is missing or a value is out of range.
    """
    logging.debug(f'Validating "{section_name}" section.')
    if not isinstance(section, dict):
        msg: str = f'"{section_name}" must be a dict.'
        logging.error(msg)
        raise TypeError(msg)

    for field, specs in item_schema.items():
        if field not in section:
            if specs.get('required'):
                msg = f'"{section_name}" is missing "{field}".'
                logging.error(msg)
                raise ValueError(msg)
            continue

        value = section[field]
        # bool is an int subclass, only accept it where a bool is expected
        if (isinstance(value, bool) and specs['type'] is not bool) or not isinstance(value, specs['type']):
            msg = (
                f'"{section_name}" field "{field}" must be {specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)

        if 'allowed_values' in specs and value not in specs['allowed_values']:
            msg = f'"{section_name}" field "{field}" must be one of {specs["allowed_values"]}, got "{value}".'
            logging.error(msg)
            raise ValueError(msg)

        if 'min' in specs and value < specs['min']:
            msg = f'"{section_name}" field "{field}" must be at least {specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    Paths live under the platform's app data location as reported by
    :class:`QtCore.QStandardPaths`, so enabling Qt's test mode redirects them.
    """

    def __init__(self) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_config_template: pathlib.Path = self.template_dir / 'client.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'
        self.log_dir: pathlib.Path = app_data_dir / 'logs'

        self.client_config_path: pathlib.Path = self.config_dir / 'client.json'
        self.session_path: pathlib.Path = self.auth_dir / 'session.json'
        self.db_path: pathlib.Path = self.db_dir / 'cache.db'
        self.log_path: pathlib.Path = self.log_dir / 'expensesync.log'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If the template directory or file is missing.
        """
        logging.debug(f'Verifying required directories and templates in {self.template_dir}')
        if not self.template_dir.exists():
            msg: str = f'Missing template directory: {self.template_dir}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.client_config_template.exists():
            msg = f'Missing client config template: {self.client_config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for directory in (self.config_dir, self.auth_dir, self.db_dir, self.log_dir):
            if not directory.exists():
                logging.debug(f'Creating directory: {directory}')
                directory.mkdir(parents=True, exist_ok=True)

        if not self.client_config_path.exists():
            logging.debug(f'Copying default client config from template to {self.client_config_path}')
            shutil.copy(self.client_config_template, self.client_config_path)

    def revert_client_config_to_template(self) -> None:
        """Restore client.json from the default template file.

        Raises:
            FileNotFoundError: If the template file is missing.
        """
        logging.debug(f'Reverting client config to template: {self.client_config_template}')
        if not self.client_config_template.exists():
            msg: str = f'Client config template not found: {self.client_config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        shutil.copy(self.client_config_template, self.client_config_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save client.json sections.
    """

    def __init__(self, client_config_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load the client configuration.

        Args:
            client_config_path: Optional path to a custom client.json file.
        """
        super().__init__()

        self.client_config_path: pathlib.Path = (
            pathlib.Path(client_config_path)
            if client_config_path
            else self.client_config_path
        )

        self.config_data: Dict[str, Any] = {k: {} for k in CLIENT_SCHEMA}
        self.load_config()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a metadata value using dictionary-style access.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')
        return self.config_data['metadata'].get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a metadata value using dictionary-style access and persist it.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')

        section = self.get_section('metadata')
        section[key] = value
        self.set_section('metadata', section)

    def load_config(self) -> Dict[str, Any]:
        """Load client.json from disk and validate against schema.

        Returns:
            The loaded configuration dictionary.

        Raises:
            status.ClientConfigNotFoundException: If client.json is missing.
            status.ClientConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading client config from "{self.client_config_path}"')
        if not self.client_config_path.exists():
            raise status.ClientConfigNotFoundException(str(self.client_config_path))

        try:
            with self.client_config_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data)
        except (ValueError, TypeError) as ex:
            raise status.ClientConfigInvalidException(str(ex)) from ex

        self.config_data = data
        return self.config_data

    def validate_config_data(self, data: Dict[str, Any] = None) -> None:
        """Validate configuration data against CLIENT_SCHEMA.

        Args:
            data (dict, optional): Data to validate. Defaults to self.config_data.

        Raises:
            ValueError: If a required section is missing or a value is out of range.
            TypeError: If a section or value has the wrong type.
        """
        if data is None:
            data = self.config_data
        if not isinstance(data, dict) or not data:
            raise ValueError('Client config is empty.')

        for section_name, specs in CLIENT_SCHEMA.items():
            if specs.get('required') and section_name not in data:
                raise ValueError(f'Missing required section: {section_name}')
            if section_name not in data:
                continue
            _validate_section(section_name, data[section_name], specs['item_schema'])

        logging.debug('Client config is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a configuration section.

        Raises:
            KeyError: If section_name is not a known section.
        """
        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        The previous section is restored when the new data fails validation.

        Raises:
            ValueError: If section_name is unknown or the data is invalid.
            TypeError: If a value has the wrong type.
        """
        if section_name not in CLIENT_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.config_data.get(section_name, {}).copy()
        self.config_data[section_name] = new_data
        try:
            self.validate_config_data()
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.config_data[section_name] = current_section_data
            raise

        self.save_section(section_name)

        from ..signals import signals
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Restore a single section from the template and persist it.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name not in CLIENT_SCHEMA:
            raise ValueError(f'Unknown section_name for revert: "{section_name}"')

        with self.client_config_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)
        self.set_section(section_name, template_data[section_name])

    def save_section(self, section_name: str) -> None:
        """Write the in-memory section back into client.json on disk.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name not in CLIENT_SCHEMA:
            raise ValueError(f'Unknown section_name for save: "{section_name}"')

        data: Dict[str, Any] = {}
        if self.client_config_path.exists():
            with self.client_config_path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        data[section_name] = self.config_data[section_name]

        with self.client_config_path.open('w', encoding='utf-8') as f:
            json.dump(data, f, indent=4)
        logging.debug(f'Section "{section_name}" saved to {self.client_config_path}')


settings = SettingsAPI()
