"""
Tests for identity management, the session key store, the secure messaging
protocol and inbound frame dispatch.
"""

import json
import threading

import pytest

from e2ee import (
    CryptoError,
    DecodeError,
    IdentityManager,
    KeyExchangeEnvelope,
    MemoryStore,
    NotInitializedError,
    PlainEnvelope,
    SecureEnvelope,
    SecureMessagingProtocol,
    SessionKeyStore,
    SignatureInvalid,
    FrameError,
    parse_frame,
)
from e2ee.codec import b64encode, encode_private_key, encode_public_key
from e2ee.dispatch import (
    DECRYPT_FAILED,
    ERROR,
    KEY_EXCHANGE_FAILED,
    KEY_EXCHANGE_OK,
    SYSTEM,
    MessageDispatcher,
)
from e2ee.envelopes import TEXT
from e2ee.identity import PRIVATE_KEY, PUBLIC_KEY
from e2ee.primitives import generate_symmetric_key, sign


def make_peer(username: str) -> SecureMessagingProtocol:
    identity = IdentityManager(MemoryStore())
    identity.initialize()
    return SecureMessagingProtocol(identity, SessionKeyStore(), username=username)


@pytest.fixture(scope="module")
def alice():
    return make_peer("alice")


@pytest.fixture(scope="module")
def bob():
    return make_peer("bob")


@pytest.fixture(scope="module")
def carol():
    return make_peer("carol")


@pytest.fixture(autouse=True)
def fresh_session_keys(alice, bob, carol):
    for peer in (alice, bob, carol):
        peer.session_keys.clear()


def public_key_of(peer: SecureMessagingProtocol) -> str:
    return peer.identity.encoded_public_key()


# ── Identity manager ────────────────────────────────────────────────


def test_identity_accessors_before_initialize():
    identity = IdentityManager(MemoryStore())
    assert not identity.is_initialized
    assert identity.public_key is None
    assert identity.private_key is None
    assert identity.encoded_public_key() is None
    with pytest.raises(NotInitializedError):
        identity.require()


def test_identity_first_run_persists_key_pair():
    store = MemoryStore()
    identity = IdentityManager(store)
    key_pair = identity.initialize()

    assert identity.is_initialized
    assert store.get(PUBLIC_KEY) == encode_public_key(key_pair.public_key)
    assert store.get(PRIVATE_KEY) == encode_private_key(key_pair.private_key)


def test_identity_reload_uses_stored_key_pair():
    store = MemoryStore()
    first = IdentityManager(store)
    first.initialize()

    second = IdentityManager(store)
    second.initialize()
    assert second.encoded_public_key() == first.encoded_public_key()


def test_identity_regenerates_corrupt_key_pair():
    store = MemoryStore({PRIVATE_KEY: "garbage", PUBLIC_KEY: "garbage"})
    identity = IdentityManager(store)
    identity.initialize()

    assert identity.is_initialized
    assert store.get(PUBLIC_KEY) == identity.encoded_public_key()
    assert store.get(PRIVATE_KEY) != "garbage"


def test_identity_regenerates_when_one_half_missing():
    original = IdentityManager(MemoryStore())
    original.initialize()
    store = MemoryStore({PUBLIC_KEY: original.encoded_public_key()})

    identity = IdentityManager(store)
    identity.initialize()
    assert identity.encoded_public_key() != original.encoded_public_key()
    assert store.get(PRIVATE_KEY) is not None


# ── Session key store ───────────────────────────────────────────────


def test_session_store_get_put_clear():
    store = SessionKeyStore()
    assert store.get("bob") is None

    key = generate_symmetric_key()
    store.put("bob", key)
    assert store.get("bob") == key
    assert "bob" in store

    newer = generate_symmetric_key()
    store.put("bob", newer)
    assert store.get("bob") == newer
    assert len(store) == 1

    store.put("carol", key)
    store.clear()
    for peer in ("bob", "carol"):
        assert store.get(peer) is None
    assert len(store) == 0


def test_session_store_get_or_create_caches():
    store = SessionKeyStore()
    calls = []

    def factory():
        calls.append(1)
        return generate_symmetric_key()

    first = store.get_or_create("bob", factory)
    second = store.get_or_create("bob", factory)
    assert first == second
    assert len(calls) == 1


def test_session_store_concurrent_get_or_create():
    store = SessionKeyStore()
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(store.get_or_create("bob", generate_symmetric_key))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(results)) == 1
    assert store.peers() == ["bob"]


# ── Secure messaging protocol ───────────────────────────────────────


def test_end_to_end_scenario(alice, bob):
    exchange = alice.create_key_exchange(public_key_of(bob))
    assert exchange.type == "KEY_EXCHANGE"
    assert exchange.sender == "alice"
    assert exchange.sender_public_key == public_key_of(alice)

    assert bob.process_key_exchange(exchange)
    assert bob.session_keys.get("alice") is not None

    envelope = alice.encrypt_for_peer("hello", "bob", public_key_of(bob))
    assert envelope.type == "SECURE"
    assert "hello" not in envelope.to_wire()

    message = bob.decrypt_envelope(envelope)
    assert (message.content, message.authentic) == ("hello", True)
    assert message.sender == "alice"


def test_encrypt_for_peer_reuses_session_key(alice, bob):
    alice.encrypt_for_peer("one", "bob", public_key_of(bob))
    key = alice.session_keys.get("bob")
    assert key is not None

    alice.encrypt_for_peer("two", "bob", public_key_of(bob))
    assert alice.session_keys.get("bob") == key


def test_decrypt_caches_sender_session_key(alice, bob):
    envelope = alice.encrypt_for_peer("hi bob", "bob", public_key_of(bob))
    bob.decrypt_envelope(envelope)
    assert bob.session_keys.get("alice") == alice.session_keys.get("bob")


def test_decrypt_for_wrong_recipient_fails(alice, bob, carol):
    envelope = alice.encrypt_for_peer("for carol only", "carol", public_key_of(carol))

    with pytest.raises(CryptoError):
        bob.decrypt_envelope(envelope)
    assert bob.session_keys.get("alice") is None


def test_decrypt_rejects_forged_signature(alice, bob, carol):
    envelope = alice.encrypt_for_peer("genuine", "bob", public_key_of(bob))
    # Carol claims to be the sender
    forged = envelope.model_copy(update={"sender_public_key": public_key_of(carol)})

    with pytest.raises(SignatureInvalid):
        bob.decrypt_envelope(forged)
    assert bob.session_keys.get("alice") is None


def test_decrypt_rejects_tampered_payload(alice, bob):
    envelope = alice.encrypt_for_peer("do not touch", "bob", public_key_of(bob))
    payload = envelope.encrypted_payload.model_copy(
        update={"ciphertext": b64encode(b"\x00" * 32)}
    )
    tampered = envelope.model_copy(update={"encrypted_payload": payload})

    with pytest.raises(CryptoError):
        bob.decrypt_envelope(tampered)


def test_operations_require_initialized_identity(bob):
    uninitialized = SecureMessagingProtocol(IdentityManager(MemoryStore()), SessionKeyStore(), "nobody")

    with pytest.raises(NotInitializedError):
        uninitialized.encrypt_for_peer("hi", "bob", public_key_of(bob))
    with pytest.raises(NotInitializedError):
        uninitialized.create_key_exchange(public_key_of(bob))

    exchange = bob.create_key_exchange(public_key_of(bob))
    assert uninitialized.process_key_exchange(exchange) is False


def test_encrypt_for_peer_rejects_malformed_public_key(alice):
    with pytest.raises(DecodeError):
        alice.encrypt_for_peer("hi", "bob", "not a key")


def test_key_exchange_for_other_recipient_leaves_no_state(alice, bob, carol):
    exchange = alice.create_key_exchange(public_key_of(carol))
    assert bob.process_key_exchange(exchange) is False
    assert len(bob.session_keys) == 0


def test_key_exchange_with_bad_signature_leaves_no_state(alice, bob):
    exchange = alice.create_key_exchange(public_key_of(bob))
    bogus_signature = b64encode(sign("something else", alice.identity.private_key))
    forged = exchange.model_copy(update={"signature": bogus_signature})

    assert bob.process_key_exchange(forged) is False
    assert bob.session_keys.get("alice") is None


def test_key_exchange_overwrites_previous_key(alice, bob):
    assert bob.process_key_exchange(alice.create_key_exchange(public_key_of(bob)))
    first = bob.session_keys.get("alice")
    assert bob.process_key_exchange(alice.create_key_exchange(public_key_of(bob)))
    assert bob.session_keys.get("alice") != first


def test_key_exchange_with_malformed_fields_returns_false(alice, bob):
    exchange = alice.create_key_exchange(public_key_of(bob))
    broken = exchange.model_copy(update={"wrapped_session_key": "%%%"})
    assert bob.process_key_exchange(broken) is False


# ── Wire format and dispatch ────────────────────────────────────────


def test_secure_envelope_wire_fields(alice, bob):
    envelope = alice.encrypt_for_peer("hello", "bob", public_key_of(bob))
    data = json.loads(envelope.to_wire())

    assert set(data) == {
        "encryptedPayload", "wrappedSessionKey", "signature",
        "senderPublicKey", "timestamp", "sender", "type",
    }
    assert set(data["encryptedPayload"]) == {"ciphertext", "nonce"}
    assert data["type"] == "SECURE"
    assert isinstance(data["timestamp"], int)


def test_key_exchange_wire_fields(alice, bob):
    data = json.loads(alice.create_key_exchange(public_key_of(bob)).to_wire())
    assert set(data) == {
        "senderPublicKey", "wrappedSessionKey", "signature", "timestamp", "sender", "type",
    }
    assert data["type"] == "KEY_EXCHANGE"


def test_parse_frame_dispatches_on_type(alice, bob):
    secure = alice.encrypt_for_peer("x", "bob", public_key_of(bob))
    exchange = alice.create_key_exchange(public_key_of(bob))

    assert isinstance(parse_frame(secure.to_wire()), SecureEnvelope)
    assert isinstance(parse_frame(exchange.to_wire()), KeyExchangeEnvelope)
    assert parse_frame(secure.to_wire()).model_dump() == secure.model_dump()

    plain = parse_frame('{"content": "hi", "sender": "carol", "type": "TEXT"}')
    assert isinstance(plain, PlainEnvelope)
    assert plain.content == "hi"

    # Missing and unknown types read as plain text
    assert isinstance(parse_frame('{"content": "no type"}'), PlainEnvelope)
    assert isinstance(parse_frame('{"content": "odd", "type": "SYSTEM"}'), PlainEnvelope)


@pytest.mark.parametrize("frame", [
    "not json",
    "[1, 2, 3]",
    '{"type": "SECURE", "sender": "alice"}',
    '{"type": "KEY_EXCHANGE"}',
    '{"type": "TEXT"}',
    pytest.param("[" * 100000 + "]" * 100000, id="deeply-nested-array"),
    pytest.param(
        '{"type": "TEXT", "content": ' + '{"a":' * 50000 + "1" + "}" * 50000 + "}",
        id="deeply-nested-content",
    ),
])
def test_parse_frame_rejects_malformed(frame):
    with pytest.raises(FrameError):
        parse_frame(frame)


def test_dispatcher_plain_text(bob):
    dispatcher = MessageDispatcher(bob)
    message = dispatcher.handle(PlainEnvelope(content="hey", sender="alice").to_wire())
    assert (message.content, message.sender, message.type) == ("hey", "alice", TEXT)


def test_dispatcher_secure_message(alice, bob):
    dispatcher = MessageDispatcher(bob)
    frame = alice.encrypt_for_peer("secret", "bob", public_key_of(bob)).to_wire()

    message = dispatcher.handle(frame)
    assert (message.content, message.sender, message.type) == ("secret", "alice", TEXT)


def test_dispatcher_shows_placeholder_on_decrypt_failure(alice, bob, carol):
    dispatcher = MessageDispatcher(bob)
    frame = alice.encrypt_for_peer("not for bob", "carol", public_key_of(carol)).to_wire()

    message = dispatcher.handle(frame)
    assert message.type == ERROR
    assert message.content == DECRYPT_FAILED
    assert message.sender == "alice"


def test_dispatcher_key_exchange(alice, bob, carol):
    dispatcher = MessageDispatcher(bob)

    ok = dispatcher.handle(alice.create_key_exchange(public_key_of(bob)).to_wire())
    assert (ok.content, ok.type) == (KEY_EXCHANGE_OK, SYSTEM)

    failed = dispatcher.handle(alice.create_key_exchange(public_key_of(carol)).to_wire())
    assert (failed.content, failed.type) == (KEY_EXCHANGE_FAILED, SYSTEM)


def test_dispatcher_drops_malformed_frames(bob):
    dispatcher = MessageDispatcher(bob)
    assert dispatcher.handle("}{") is None
    assert dispatcher.handle('{"type": "SECURE"}') is None


def test_dispatcher_drops_deeply_nested_frames(bob):
    dispatcher = MessageDispatcher(bob)
    assert dispatcher.handle("[" * 100000 + "]" * 100000) is None
    nested = '{"type": "TEXT", "content": ' + '{"a":' * 50000 + "1" + "}" * 50000 + "}"
    assert dispatcher.handle(nested) is None
