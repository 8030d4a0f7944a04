import pytest

import keys
from providers import PlainEncryptionProvider, PlainGateway
from santa import SecretSanta

ADMIN = "admin"
ALICE, BOB, CAROL = "alice", "bob", "carol"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def providers():
    encryption = PlainEncryptionProvider()
    return encryption, PlainGateway(encryption)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def game(providers, clock):
    encryption, gateway = providers
    return SecretSanta(ADMIN, encryption, gateway, min_participants=3, clock=clock)


@pytest.fixture
def joined(game):
    for name in (ALICE, BOB, CAROL):
        game.join(name)
    return game


@pytest.fixture
def assigned(joined):
    joined.generate_matches(ADMIN)
    return joined


def assigned_index(game, identity):
    """Plaintext behind a participant's handle, read through the provider."""
    return keys.decode_word(game.encryption.decrypt_word(game.get_match_handle(identity)))
