"""Tests for the mantra-decrypt command."""

import pytest
from click.testing import CliRunner

from mantra_pair.core.exporter import CredentialExporter
from mantra_pair.decrypt import main

SECRET = "correct horse battery staple"
CREDS = b'{"me":{"id":"15551234567:3@s.whatsapp.net"}}'


@pytest.fixture
def token():
    return CredentialExporter(encrypted=True, secret=SECRET).export(CREDS)[0]


@pytest.fixture
def runner():
    return CliRunner()


def test_writes_raw_credentials(runner, token):
    result = runner.invoke(main, [token], env={"SESSION_SECRET": SECRET})
    assert result.exit_code == 0
    assert result.stdout_bytes == CREDS


def test_secret_option(runner, token):
    result = runner.invoke(main, [token, "--secret", SECRET], env={"SESSION_SECRET": ""})
    assert result.exit_code == 0
    assert result.stdout_bytes == CREDS


def test_missing_token_is_usage_error(runner):
    result = runner.invoke(main, [], env={"SESSION_SECRET": SECRET})
    assert result.exit_code == 2


def test_plain_token_is_usage_error(runner):
    result = runner.invoke(main, ["Mantra~abc"], env={"SESSION_SECRET": SECRET})
    assert result.exit_code == 2


def test_missing_secret(runner, token):
    result = runner.invoke(main, [token], env={"SESSION_SECRET": ""})
    assert result.exit_code == 2


def test_wrong_secret(runner, token):
    result = runner.invoke(main, [token], env={"SESSION_SECRET": "nope"})
    assert result.exit_code == 1


@pytest.mark.parametrize(
    "plaintext",
    [
        b"\xff\xfe\xfd",
        b"{not json",
        b'{"v":2,"creds":"e30=","ts":0}',
        b'{"v":1,"creds":123,"ts":0}',
    ],
)
def test_bad_envelope(runner, seal, plaintext):
    result = runner.invoke(main, [seal(plaintext, SECRET)], env={"SESSION_SECRET": SECRET})
    assert result.exit_code == 1
