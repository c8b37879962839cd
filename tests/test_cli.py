from __future__ import annotations

import struct
from pathlib import Path

import pytest
from click.testing import CliRunner

from payloadsign.cli import cli
from payloadsign.defines import PAYLOAD_HEADER_FMT, PAYLOAD_MAGIC
from payloadsign.errors import KeyLoadError
from payloadsign.keys import PassphraseSource, load_private_key


@pytest.fixture
def unsigned_payload(tmp_path: Path, make_payload, ops) -> Path:
    path = tmp_path / "payload.bin"
    path.write_bytes(
        make_payload([("boot", [ops.replace(0, 16)]), ("vendor", [ops.zero()])], b"A" * 16)
    )
    return path


def _sign(runner: CliRunner, unsigned: Path, output: Path, key: Path, *extra: str, **kwargs):
    return runner.invoke(
        cli,
        ["sign", "--input", str(unsigned), "--output", str(output), "--key", str(key), *extra],
        **kwargs,
    )


def test_sign_with_unencrypted_key(tmp_path: Path, unsigned_payload: Path, key_files) -> None:
    output = tmp_path / "signed.bin"
    result = _sign(CliRunner(), unsigned_payload, output, key_files["plain"])

    assert result.exit_code == 0, result.output
    assert "Properties: 'FILE_HASH=" in result.output
    assert "Payload_metadata_size: " in result.output
    assert output.exists()

    verified = CliRunner().invoke(
        cli, ["verify", "--input", str(output), "--key", str(key_files["public"])]
    )
    assert verified.exit_code == 0, verified.output
    assert "✓ Payload signatures verified" in verified.output


def test_sign_with_pass_file(tmp_path: Path, unsigned_payload: Path, key_files, passphrase: str) -> None:
    pass_file = tmp_path / "pass.txt"
    pass_file.write_text(passphrase + "\n")

    result = _sign(
        CliRunner(),
        unsigned_payload,
        tmp_path / "signed.bin",
        key_files["encrypted"],
        "--pass-file",
        str(pass_file),
    )

    assert result.exit_code == 0, result.output


def test_sign_with_pass_env_var(tmp_path: Path, unsigned_payload: Path, key_files, passphrase: str) -> None:
    result = _sign(
        CliRunner(),
        unsigned_payload,
        tmp_path / "signed.bin",
        key_files["encrypted"],
        "--pass-env-var",
        "PAYLOAD_KEY_PASS",
        env={"PAYLOAD_KEY_PASS": passphrase},
    )

    assert result.exit_code == 0, result.output


def test_sign_prompts_for_encrypted_key(tmp_path: Path, unsigned_payload: Path, key_files, passphrase: str) -> None:
    result = _sign(
        CliRunner(),
        unsigned_payload,
        tmp_path / "signed.bin",
        key_files["encrypted"],
        input=passphrase + "\n",
    )

    assert result.exit_code == 0, result.output
    assert "Enter passphrase for" in result.output


def test_sign_wrong_passphrase_fails(tmp_path: Path, unsigned_payload: Path, key_files) -> None:
    output = tmp_path / "signed.bin"
    result = _sign(
        CliRunner(),
        unsigned_payload,
        output,
        key_files["encrypted"],
        "--pass-env-var",
        "PAYLOAD_KEY_PASS",
        env={"PAYLOAD_KEY_PASS": "wrong"},
    )

    assert result.exit_code == 1
    assert "❌ Error: Failed to load key" in result.output
    assert "Failed to decrypt private key" in result.output
    assert not output.exists()


def test_sign_rejects_both_passphrase_sources(
    tmp_path: Path, unsigned_payload: Path, key_files, passphrase: str
) -> None:
    pass_file = tmp_path / "pass.txt"
    pass_file.write_text(passphrase)

    result = _sign(
        CliRunner(),
        unsigned_payload,
        tmp_path / "signed.bin",
        key_files["encrypted"],
        "--pass-file",
        str(pass_file),
        "--pass-env-var",
        "PAYLOAD_KEY_PASS",
    )

    assert result.exit_code == 2
    assert "mutually exclusive" in result.output


def test_sign_reports_truncated_payload(tmp_path: Path, make_payload, ops, key_files) -> None:
    unsigned = tmp_path / "payload.bin"
    unsigned.write_bytes(make_payload([("system", [ops.replace(0, 64)])], b"s" * 10))

    result = _sign(CliRunner(), unsigned, tmp_path / "signed.bin", key_files["plain"])

    assert result.exit_code == 1
    assert "❌ Error: Failed to copy from original payload: system" in result.output
    assert "Caused by: Unexpected EOF: copied 10 of 64 bytes" in result.output


def test_sign_reports_invalid_payload(tmp_path: Path, key_files) -> None:
    unsigned = tmp_path / "payload.bin"
    unsigned.write_bytes(b"PK\x03\x04" + b"\x00" * 40)

    result = _sign(CliRunner(), unsigned, tmp_path / "signed.bin", key_files["plain"])

    assert result.exit_code == 1
    assert "❌ Error: Failed to parse payload header" in result.output
    assert "Invalid payload magic" in result.output


def test_verify_with_wrong_key_fails(tmp_path: Path, unsigned_payload: Path, key_files, other_key) -> None:
    from cryptography.hazmat.primitives import serialization

    output = tmp_path / "signed.bin"
    assert _sign(CliRunner(), unsigned_payload, output, key_files["plain"]).exit_code == 0
    other_public = tmp_path / "other_public.pem"
    other_public.write_bytes(
        other_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    result = CliRunner().invoke(cli, ["verify", "--input", str(output), "--key", str(other_public)])

    assert result.exit_code == 1
    assert "No signature in metadata signature matches the key" in result.output


def test_genkey_unencrypted(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli, ["genkey", "ota", "--bits", "2048", "--output-dir", str(tmp_path), "--unencrypted"]
    )

    assert result.exit_code == 0, result.output
    private_key = load_private_key(tmp_path / "ota_private.pem")
    assert private_key.key_size == 2048
    assert (tmp_path / "ota_public.pem").exists()


def test_genkey_encrypted_from_env(tmp_path: Path, passphrase: str, monkeypatch) -> None:
    monkeypatch.setenv("NEW_KEY_PASS", passphrase)

    result = CliRunner().invoke(
        cli,
        ["genkey", "ota", "--bits", "2048", "--output-dir", str(tmp_path), "--pass-env-var", "NEW_KEY_PASS"],
    )

    assert result.exit_code == 0, result.output
    with pytest.raises(KeyLoadError, match="no passphrase was given"):
        load_private_key(tmp_path / "ota_private.pem")
    private_key = load_private_key(tmp_path / "ota_private.pem", PassphraseSource("env", "NEW_KEY_PASS"))
    assert private_key.key_size == 2048


@pytest.mark.parametrize("manifest_size", [2**64 - 1, 2**62])
def test_sign_reports_oversized_manifest(tmp_path: Path, key_files, manifest_size: int) -> None:
    unsigned = tmp_path / "payload.bin"
    unsigned.write_bytes(struct.pack(PAYLOAD_HEADER_FMT, PAYLOAD_MAGIC, 2, manifest_size, 0) + b"\x00" * 16)

    result = _sign(CliRunner(), unsigned, tmp_path / "signed.bin", key_files["plain"])

    assert result.exit_code == 1
    assert "❌ Error: Failed to parse payload header" in result.output
    assert "Truncated payload manifest" in result.output
    assert "Traceback" not in result.output


def test_genkey_rejects_empty_passphrase(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("NEW_KEY_PASS", "")

    result = CliRunner().invoke(
        cli,
        ["genkey", "ota", "--bits", "2048", "--output-dir", str(tmp_path), "--pass-env-var", "NEW_KEY_PASS"],
    )

    assert result.exit_code == 2
    assert "Empty passphrase" in result.output
    assert not (tmp_path / "ota_private.pem").exists()
