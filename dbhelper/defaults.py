# dbhelper/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'default_db_type': 'sqlserver',
    'default_cursor_type': 'list',
    'default_column_case': 'preserve',   # result helpers key rows by the names the server returns
    'default_command_timeout': None,     # seconds, None leaves the driver default alone
    'null_string': '',       # how null is represented in text outputs
    'null_string_csv': '',   # how null is represented in CSV outputs
    'date_format': '%Y-%m-%d',
    'time_format': '%H:%M:%S',
    'datetime_format': '%Y-%m-%d %H:%M:%S',
    'timestamp_format': '%Y-%m-%d %H:%M:%S.%f',  # with microseconds
    'tz_suffix': ' %z',
    'batch_encoding': 'utf-8-sig',
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}
