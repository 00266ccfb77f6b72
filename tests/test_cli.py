# tests/test_cli.py
import shutil

import pytest
from cryptography.fernet import Fernet

from dbhelper.cli import main

DEPLOY = (
    "UPDATE quotes SET volume = 0 WHERE volume IS NULL\r\n"
    "GO\r\n"
    "INSERT INTO quotes (symbol, open, close, volume) VALUES ('ORCL', 11.5, 11.75, 400)\r\n"
    "GO\r\n"
)

BROKEN = (
    "DELETE FROM quotes WHERE symbol = 'IBM'\n"
    "GO\n"
    "INSERT INTO quotes (symbol) VALUES ('MSFT')\n"
    "GO\n"
)


@pytest.fixture
def script(tmp_path):
    def write(text, name='deploy.sql'):
        path = tmp_path / name
        path.write_bytes(text.encode('utf-8'))
        return str(path)
    return write


class TestHelp:
    """dbhelper --help"""

    def test_description(self, capsys):
        """The module docstring describes the command."""
        with pytest.raises(SystemExit) as excinfo:
            main(['--help'])
        assert excinfo.value.code == 0
        out = capsys.readouterr().out
        assert "running GO-separated SQL scripts" in out
        assert "run-batch" in out


class TestSplitCommand:
    """dbhelper split"""

    def test_split(self, script, capsys):
        """Statements are numbered and printed."""
        assert main(['split', script(DEPLOY)]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "2 statement(s)"
        assert out[1] == "-- [1]"
        assert out[2] == "UPDATE quotes SET volume = 0 WHERE volume IS NULL"
        assert out[3] == "-- [2]"

    def test_missing_file(self, tmp_path, capsys):
        """Errors are reported on stderr with exit code 1."""
        assert main(['split', str(tmp_path / 'missing.sql')]) == 1
        assert capsys.readouterr().err.startswith("Error:")


class TestRunBatchCommand:
    """dbhelper run-batch"""

    def test_run(self, script, quotes_file_db, count_quotes, capsys):
        """Each statement runs and its row count is printed."""
        assert main(['run-batch', script(DEPLOY), '-s', quotes_file_db, '--db-type', 'sqlite']) == 0
        assert capsys.readouterr().out.splitlines() == ["[1] 1 row(s) affected", "[2] 1 row(s) affected"]
        assert count_quotes(quotes_file_db) == 4

    def test_failure_keeps_earlier_statements(self, script, quotes_file_db, count_quotes, capsys):
        """Without --transaction work done before the failure stays."""
        assert main(['run-batch', script(BROKEN), '-s', quotes_file_db, '--db-type', 'sqlite']) == 1
        assert "UNIQUE constraint failed" in capsys.readouterr().err
        assert count_quotes(quotes_file_db) == 2

    def test_failure_in_transaction_rolls_back(self, script, quotes_file_db, count_quotes, capsys):
        """With --transaction a failure undoes the whole script."""
        assert main(['run-batch', script(BROKEN), '-s', quotes_file_db, '--db-type', 'sqlite',
                     '--transaction']) == 1
        assert count_quotes(quotes_file_db) == 3

    def test_named_connection(self, script, tmp_path, test_config_file, capsys):
        """--connection opens a connection from the config file."""
        path = script("CREATE TABLE t (id INTEGER)\nGO\nINSERT INTO t VALUES (1)\nGO\n")
        assert main(['run-batch', path, '-c', 'scratch', '--config', str(test_config_file)]) == 0
        assert capsys.readouterr().out.splitlines() == ["[1] -1 row(s) affected", "[2] 1 row(s) affected"]

    def test_target_required(self, script):
        """A connection or connection string is required."""
        with pytest.raises(SystemExit):
            main(['run-batch', script(DEPLOY)])

    def test_only_separators(self, script, quotes_file_db, capsys):
        """A script without statements is an error."""
        assert main(['run-batch', script("GO\nGO\n"), '-s', quotes_file_db, '--db-type', 'sqlite']) == 1
        assert "no statements to execute" in capsys.readouterr().err


class TestExportCsvCommand:
    """dbhelper export-csv"""

    def test_export(self, quotes_file_db, tmp_path, capsys):
        """The query result is written with a header line."""
        output = tmp_path / 'quotes.csv'
        assert main(['export-csv', "SELECT symbol FROM quotes ORDER BY symbol", str(output),
                     '-s', quotes_file_db, '--db-type', 'sqlite']) == 0
        assert output.read_text(newline='') == "symbol\r\nAAPL\r\nIBM\r\nMSFT\r\n"
        assert capsys.readouterr().out.strip() == f"Wrote 3 row(s) to {output}"


class TestConnectionStringCommands:
    """dbhelper build-connection-string and obfuscate"""

    def test_build(self, capsys):
        """The connection string is printed."""
        assert main(['build-connection-string', '--server', 'db01', '--database', 'sales',
                     '--user', 'etl', '--password', 'pw', '--connect-timeout', '5']) == 0
        assert capsys.readouterr().out.strip() == \
            "Data Source=db01;Initial Catalog=sales;Integrated Security=False;User ID=etl;Password=pw;Connect Timeout=5"

    def test_build_invalid_port(self, capsys):
        """Invalid arguments exit with code 1."""
        assert main(['build-connection-string', '--server', 'db01', '--port', '70000']) == 1
        assert "is not a valid port number" in capsys.readouterr().err

    def test_obfuscate(self, capsys):
        """Credentials are masked."""
        assert main(['obfuscate', "Data Source=db01;User ID=sa;Password=pw"]) == 0
        assert capsys.readouterr().out.strip() == "Data Source=db01;User ID=*****;Password=*****"

    def test_obfuscate_keep_user(self, capsys):
        """--keep-user leaves the user name visible."""
        main(['obfuscate', "Data Source=db01;User ID=sa;Password=pw", '--keep-user'])
        assert capsys.readouterr().out.strip() == "Data Source=db01;User ID=sa;Password=*****"


class TestKeyCommands:
    """dbhelper generate-key, encrypt-password and encrypt-config"""

    def test_generate_key(self, capsys):
        """A valid key is printed."""
        assert main(['generate-key']) == 0
        key = capsys.readouterr().out.strip().splitlines()[-1]
        Fernet(key.encode())

    def test_encrypt_password(self, capsys):
        """The encrypted password is printed."""
        assert main(['encrypt-password', 'pw']) == 0
        assert capsys.readouterr().out.strip().startswith('gAAAAA')

    def test_encrypt_config(self, tmp_path, test_config_file, capsys):
        """Plain passwords in the file are encrypted."""
        path = tmp_path / 'copy.yml'
        shutil.copy(test_config_file, path)
        assert main(['encrypt-config', str(path)]) == 0
        assert "Encrypted 2 passwords" in capsys.readouterr().out

    def test_checkup(self, capsys):
        """The checkup lists drivers and config health."""
        assert main(['checkup']) == 0
        out = capsys.readouterr().out
        assert "sqlite3" in out
        assert "Config loaded" in out
