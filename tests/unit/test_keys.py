import pytest

from conftest import fake_pubkey
from wg_gateway.errors import KeyGenError
from wg_gateway.keys import KeyGenerator


def test_generate_keypair_derives_public_key(executor):
    keypair = KeyGenerator(executor).generate_keypair()

    assert keypair.public_key == fake_pubkey(keypair.private_key)
    assert executor.calls == [("wg", "genkey"), ("wg", "pubkey")]
    assert executor.inputs[1] == keypair.private_key + "\n"


def test_public_key_round_trip(executor):
    keygen = KeyGenerator(executor)
    keypair = keygen.generate_keypair()

    assert keygen.derive_public_key(keypair.private_key) == keypair.public_key


def test_keypairs_are_independent(executor):
    keygen = KeyGenerator(executor)

    first = keygen.generate_keypair()
    second = keygen.generate_keypair()

    assert first.private_key != second.private_key
    assert first.public_key != second.public_key


def test_private_key_not_in_repr(executor):
    keypair = KeyGenerator(executor).generate_keypair()

    assert keypair.private_key not in repr(keypair)


def test_genkey_failure_is_not_retried(executor):
    executor.fail("wg", "genkey", returncode=127, stderr="wg: not found")

    with pytest.raises(KeyGenError, match="wg: not found"):
        KeyGenerator(executor).generate_keypair()

    assert executor.calls == [("wg", "genkey")]


@pytest.mark.parametrize("stdout", ["", "   \n", "not-base64!!", "c2hvcnQ="])
def test_malformed_private_key_rejected(executor, stdout):
    executor.output("wg", "genkey", stdout=stdout)

    with pytest.raises(KeyGenError):
        KeyGenerator(executor).generate_keypair()


def test_pubkey_failure(executor):
    executor.fail("wg", "pubkey")

    with pytest.raises(KeyGenError, match="public key derivation failed"):
        KeyGenerator(executor).generate_keypair()
