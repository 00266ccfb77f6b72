# dbhelper/config.py
"""
Configuration management for database connections.
Supports YAML configuration files with optional password encryption and global settings.
"""

import os
from textwrap import dedent
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple

from .defaults import settings
from .connection_string import (build_connection_string, format_connection_string,
                                obfuscate_credentials, parse_connection_string,
                                canonical_key, PASSWORD, USER_ID)
from .database import Database, open_connection, register_user_drivers
from .utils import reset_format_cache

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML is required. Install with: pip install PyYAML")

try:
    from cryptography.fernet import Fernet
    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

try:
    import keyring
    HAS_KEYRING = True
except ImportError:
    HAS_KEYRING = False

logger = logging.getLogger(__name__)

KEY_ENV_VAR = 'DBHELPER_ENCRYPTION_KEY'
KEYRING_SERVICE = 'dbhelper'
KEYRING_USER = 'encryption_key'

# keys of a connection entry that describe the server rather than the driver
_CONNECTION_PARAMS = ('host', 'port', 'instance', 'database', 'user', 'password', 'timeout')


def diagnose_config(config_file: Optional[str] = None) -> List[Tuple[str, str]]:
    """
    Config health check.

    Returns:
        List of (status, message) tuples where status is '✓', '✗' or '?'
    """
    results = []

    try:
        mgr = _get_manager(config_file)
        results.append(('✓', f"Config loaded: {mgr.config_file}"))
    except Exception as e:
        results.append(('✗', f"Config failed: {e}"))
        return results

    results.append(('✓', "cryptography ready") if HAS_CRYPTO else ('✗', "cryptography missing"))
    results.append(('✓', "keyring ready") if HAS_KEYRING else ('?', "keyring optional"))

    # peek at the keys, nothing is decrypted
    env_key = os.getenv(KEY_ENV_VAR)
    keyring_key = _keyring_key()

    if env_key:
        results.append(('✓', f"{KEY_ENV_VAR} set"))
        results.append(('✓', "Env key valid") if _valid_fernet(env_key) else ('✗', "Env key invalid"))
    else:
        results.append(('?', "No env key"))

    if keyring_key:
        results.append(('✓', "Keyring key set"))
        results.append(('✓', "Keyring key valid") if _valid_fernet(keyring_key) else ('✗', "Keyring key invalid"))
    elif HAS_KEYRING:
        results.append(('?', "Keyring empty"))

    if env_key and keyring_key:
        results.append(('✓', "Keys match") if env_key == keyring_key else ('✗', "KEYS MISMATCH"))

    entries = list(mgr.config.get('connections', {}).values()) + list(mgr.config.get('passwords', {}).values())
    enc_count = sum(1 for entry in entries if 'encrypted_password' in entry)
    results.append(('✓', f"{enc_count} encrypted passwords") if enc_count else ('✓', "No encrypted passwords"))

    plain_count = sum(1 for entry in entries if _is_plain_password(entry.get('password')))
    plain_count += sum(1 for entry in mgr.config.get('connections', {}).values()
                       if _has_inline_password(entry.get('connection_string')))
    results.append(("✗", f"{plain_count} unencrypted passwords!") if plain_count
                   else ('✓', "No unencrypted passwords"))
    return results


def _is_plain_password(password) -> bool:
    return password is not None and not str(password).startswith('${')


def _has_inline_password(connection_string: Optional[str]) -> bool:
    if not connection_string:
        return False
    try:
        pairs = parse_connection_string(connection_string)
    except ValueError:
        return False
    return any(canonical_key(key) == PASSWORD for key in pairs)


def _keyring_key() -> Optional[str]:
    if not HAS_KEYRING:
        return None
    try:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_USER)
    except Exception as e:
        logger.debug(f"Keyring lookup failed: {e}")
        return None


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except Exception:
        return False


def _substitute_env(value: Any) -> Any:
    """Replace a ``${VAR}`` value with the environment variable VAR."""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        env_var = value[2:-1]
        env_value = os.environ.get(env_var)
        if env_value is None:
            raise ValueError(f"Environment variable {env_var} not set")
        return env_value
    return value


class ConfigManager:
    """
    Manage dbhelper configuration from YAML files.

    Configuration File Structure
    ----------------------------
    ::

        # dbhelper.yml
        settings:
          default_db_type: sqlserver
          default_command_timeout: 30

        connections:
          warehouse:
            type: sqlserver
            host: db01.example.com
            port: 1433
            database: sales
            user: etl
            encrypted_password: gAAAAABh...

          reporting:
            connection_string: Data Source=db02;Initial Catalog=reports;Integrated Security=True

          scratch:
            type: sqlite
            database: /tmp/scratch.db

        passwords:
          smtp:
            encrypted_password: gAAAAABh...

        drivers:
          pyodbc_sqlserver_17:
            database_type: sqlserver
            module: pyodbc
            priority: 10
            ...

    Configuration Locations
    -----------------------
    1. File passed as config_file
    2. ``./dbhelper.yml``
    3. ``./dbhelper.yaml``
    4. ``~/.config/dbhelper.yml``
    5. ``~/.config/dbhelper.yaml``

    Notes
    -----
    * Encrypted passwords need the key in the DBHELPER_ENCRYPTION_KEY
      environment variable or in the system keyring (``dbhelper store-key``)
    * Passwords can reference environment variables with ${VAR_NAME}
    """

    def __init__(self, config_file: Optional[str] = None):
        """
        Find, load and apply a configuration file.

        Raises
        ------
        FileNotFoundError
            If no config file found in any search location
        ValueError
            If config file is invalid or malformed
        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None

        self._apply_settings()

    def _find_config_file(self, config_file: Optional[str]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("dbhelper.yml"),
            Path("dbhelper.yaml"),
            Path.home() / ".config" / "dbhelper.yml",
            Path.home() / ".config" / "dbhelper.yaml"
        ]

        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Invalid config file {self.config_file}.")

            for section in ('settings', 'connections', 'passwords', 'drivers'):
                if section in config and not isinstance(config[section], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: '{section}' must be a dictionary")

            for name, conn in config.get('connections', {}).items():
                if not isinstance(conn, dict) or not ({'connection_string', 'host', 'database'} & set(conn)):
                    raise ValueError(
                        f"Invalid connection '{name}' in {self.config_file}: "
                        f"'connection_string', 'host' or 'database' is required")

            for name, password_data in config.get('passwords', {}).items():
                if not isinstance(password_data, dict):
                    raise ValueError(f"Invalid password entry '{name}' in {self.config_file}: must be a dictionary")
                if 'password' not in password_data and 'encrypted_password' not in password_data:
                    raise ValueError(
                        f"Invalid password entry '{name}' in {self.config_file}: "
                        f"'password' or 'encrypted_password' is required")

            logger.info(f"Loaded config from {self.config_file}")
            return config
        except Exception as e:
            raise ValueError(f"Failed to load config file {self.config_file}: {e}")

    def _apply_settings(self) -> None:
        """Apply global settings and user drivers from config."""
        config_settings = self.config.get('settings', {})
        for key, value in config_settings.items():
            # merge nested blocks such as 'logging' instead of replacing them
            if isinstance(value, dict) and isinstance(settings.get(key), dict):
                settings[key].update(value)
            else:
                settings[key] = value
        reset_format_cache()

        drivers = self.config.get('drivers')
        if drivers:
            register_user_drivers(drivers)
            logger.debug(f"Registered user drivers: {sorted(drivers)}")

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the config.

        Args:
            key: Setting key (supports dot notation like 'logging.level')
            default: Default value if key not found

        Example:
            level = config.get_setting('logging.level', 'INFO')
        """
        value = self.config.get('settings', {})
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from the environment or keyring."""
        # environment variable takes precedence
        key_str = os.environ.get(KEY_ENV_VAR)
        if key_str:
            logger.debug(f"Using {KEY_ENV_VAR} from environment")
            return key_str.encode()

        if not HAS_CRYPTO:
            raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

        key_str = _keyring_key()
        if key_str:
            logger.debug("Using encryption key from keyring")
            return key_str.encode()

        if HAS_KEYRING:
            msg = dedent("""\
            Encryption key not found in environment or keyring.
            Run: `dbhelper store-key` to generate and store a new encryption key in the keyring.
            """)
        else:
            msg = dedent(f"""\
            Encryption key not found in environment or keyring.
            Run `dbhelper generate-key` to generate a new encryption key
            then set it in the {KEY_ENV_VAR} environment variable.""")
        raise ValueError(msg)

    def _get_fernet(self) -> 'Fernet':
        """Get or create Fernet instance for encryption/decryption."""
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        try:
            return self._get_fernet().decrypt(encrypted_password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to decrypt password: {e}")

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        try:
            return self._get_fernet().encrypt(password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to encrypt password: {e}")

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection with its password resolved."""
        connections = self.config.get('connections', {})

        if name not in connections:
            available = list(connections.keys())
            raise ValueError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {available}"
            )

        config = connections[name].copy()

        if 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config.pop('encrypted_password'))

        if 'password' in config:
            config['password'] = _substitute_env(config['password'])

        return config

    def get_connection_string(self, name: str, password: Optional[str] = None) -> str:
        """
        Connection string for a named connection.

        Entries holding a connection_string are returned as written, with
        user and password from the entry filled in. Entries holding
        parameters are built with build_connection_string() (SQL Server)
        or as ``Data Source=<database>`` (SQLite).
        """
        config = self.get_connection_config(name)
        if password is not None:
            config['password'] = password

        if config.get('connection_string'):
            pairs = parse_connection_string(_substitute_env(config['connection_string']))
            for canonical, key in ((USER_ID, 'user'), (PASSWORD, 'password')):
                if config.get(key) is not None:
                    for existing in [k for k in pairs if canonical_key(k) == canonical]:
                        del pairs[existing]
                    pairs[canonical] = config[key]
            return format_connection_string(pairs)

        db_type = config.get('type') or settings.get('default_db_type', 'sqlserver')
        if db_type == 'sqlite':
            return format_connection_string([('Data Source', config['database'])])

        unknown = set(config) - set(_CONNECTION_PARAMS) - {'type', 'driver'}
        if unknown:
            logger.warning(f"Unknown settings in connection '{name}' (ignored): {sorted(unknown)}")
        return build_connection_string(
            server_name=config.get('host'),
            port=config.get('port'),
            instance_name=config.get('instance'),
            database_name=config.get('database'),
            user_name=config.get('user'),
            password=config.get('password'),
            connection_timeout=config.get('timeout'),
        )

    def list_connections(self) -> list:
        """List all available connection names."""
        return list(self.config.get('connections', {}).keys())

    def get_password(self, name: str) -> str:
        """
        Get a stored password by name.

        Raises:
            ValueError: If password not found or decryption fails
        """
        passwords = self.config.get('passwords', {})

        if name not in passwords:
            available = list(passwords.keys())
            raise ValueError(
                f"Password '{name}' not found in config. "
                f"Available passwords: {available}"
            )

        password_entry = passwords[name]
        if 'encrypted_password' in password_entry:
            return self.decrypt_password(password_entry['encrypted_password'])
        return _substitute_env(password_entry['password'])

    def list_passwords(self) -> list:
        """List all available password names."""
        return list(self.config.get('passwords', {}).keys())


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def _get_manager(config_file: Optional[str] = None) -> ConfigManager:
    global _config_manager

    if config_file:
        return ConfigManager(config_file)
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def store_key(key: Optional[str] = None, force: bool = False) -> None:
    """CLI utility to store encryption key in system keyring."""
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    if not HAS_KEYRING:
        raise ValueError("Keyring not available. Install keyring package to store key in system keyring.")

    current_key = _keyring_key()
    if current_key:
        if force:
            msg = "Encryption key already stored in system keyring. Overwriting!"
            logger.warning(msg)
            print(msg)
        else:
            msg = "Encryption key already stored in system keyring. Use --force to overwrite."
            logger.warning(msg)
            print(msg)
            return

    if key is None:
        key = _generate_encryption_key()
    elif not _valid_fernet(key):
        raise ValueError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USER, key)
    except Exception as e:
        msg = f"Failed to store encryption key in system keyring: {e}"
        logger.error(msg)
        raise ValueError(msg)
    msg = "Stored encryption key in system keyring"
    logger.info(msg)
    print(msg)


def _generate_encryption_key() -> str:
    return Fernet.generate_key().decode()


def generate_encryption_key() -> str:
    """
    Generate a random encryption key.

    Store the key in the DBHELPER_ENCRYPTION_KEY environment variable
    or in the keyring with `dbhelper store-key [your key]`.

    Returns:
        str: A randomly generated encryption key.
    """
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")
    key = _generate_encryption_key()
    if HAS_KEYRING:
        msg = "Key generated.  Store in system keyring with `dbhelper store-key [your key]`"
    else:
        msg = f"Key generated.  Store in {KEY_ENV_VAR} environment variable"
    print(msg)
    return key


def set_config_file(config_file: str) -> None:
    """Set the configuration file to use globally."""
    global _config_manager
    _config_manager = ConfigManager(config_file)


def get_connection_string(name: str, obfuscate: bool = False, config_file: Optional[str] = None) -> str:
    """
    Connection string for a named connection from configuration.

    Args:
        name: Connection name from config file
        obfuscate: Mask the user name and password, for display
        config_file: Optional path to config file
    """
    connection_string = _get_manager(config_file).get_connection_string(name)
    if obfuscate:
        return obfuscate_credentials(connection_string)
    return connection_string


def connect(name: str, password: str = None, config_file: Optional[str] = None) -> Database:
    """
    Connect to a named database from configuration.

    Args:
        name: Connection name from config file
        password: Optional password if not stored in config
        config_file: Optional path to config file

    Returns:
        Database connection instance

    Example:
        db = connect('warehouse')
        read_single_value(db, "SELECT COUNT(*) FROM orders")
    """
    config_mgr = _get_manager(config_file)
    config = config_mgr.get_connection_config(name)
    connection_string = config_mgr.get_connection_string(name, password=password)
    db_type = config.get('type')
    logger.debug(f"Connecting to database {name}: {obfuscate_credentials(connection_string)}")

    db = open_connection(connection_string, db_type=db_type, driver=config.get('driver'))
    db.name = name
    return db


def get_password(name: str, config_file: Optional[str] = None) -> str:
    """
    Get a stored password from configuration.

    Example:
        smtp_password = get_password('smtp')
    """
    return _get_manager(config_file).get_password(name)


def get_setting(key: str, default: Any = None, config_file: Optional[str] = None) -> Any:
    """
    Get a setting value from configuration.

    Example:
        timeout = get_setting('default_command_timeout', 30)
        level = get_setting('logging.level', 'INFO')
    """
    return _get_manager(config_file).get_setting(key, default)


def encrypt_password(password: str = None, encryption_key: str = None) -> str:
    """
    CLI utility function to encrypt a password.

    Args:
        password: Password to encrypt (if None, prompts for input)
        encryption_key: Optional encryption key. If None, uses the environment or keyring key

    Returns:
        str: Encrypted password
    """
    if password is None:
        import getpass
        password = getpass.getpass("Enter password to encrypt: ")

    if encryption_key:
        encrypted = Fernet(encryption_key.encode()).encrypt(password.encode()).decode()
    else:
        temp_config = ConfigManager.__new__(ConfigManager)
        temp_config._fernet = None
        encrypted = temp_config.encrypt_password(password)

    print(encrypted)
    return encrypted


def encrypt_config_file(filename: str) -> int:
    """
    CLI Utility to encrypt all plain text passwords in a config file.

    Returns:
        Number of passwords encrypted
    """
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    with open(filename) as fp:
        config = yaml.safe_load(fp) or {}

    changes = 0
    for section in ('connections', 'passwords'):
        for val in config.get(section, {}).values():
            password = val.get('password')
            if 'encrypted_password' in val or not _is_plain_password(password):
                continue
            val['encrypted_password'] = temp_config.encrypt_password(str(password))
            del val['password']
            changes += 1

    if changes > 0:
        with open(filename, 'w') as fp:
            yaml.safe_dump(config, fp, default_flow_style=False, sort_keys=False)
        print(f"Encrypted {changes} passwords in {filename}")
    else:
        print(f"No passwords to encrypt in {filename}")
    return changes
