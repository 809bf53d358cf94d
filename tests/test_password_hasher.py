import pytest

from agentauth.core.auth.argon2_auth import (
    Argon2Config,
    HashingPool,
    PasswordHasher,
    generate_secure_password,
)
from agentauth.core.auth.errors import (
    EmptyPasswordError,
    ErrorCode,
    HashingError,
    HashingTimeoutError,
    InvalidHashParamsError,
)
from agentauth.core.config import PasswordConfig
from agentauth.security import constants as c


def test_hash_roundtrip(hasher) -> None:
    encoded = hasher.hash("correct horse battery staple")
    assert encoded.startswith("$argon2id$v=19$m=8192,t=1,p=1$")
    assert hasher.verify("correct horse battery staple", encoded) is True
    assert hasher.verify("wrong", encoded) is False


def test_hash_uses_fresh_salt(hasher) -> None:
    first = hasher.hash("same-password")
    second = hasher.hash("same-password")
    assert first != second
    assert hasher.verify("same-password", first)
    assert hasher.verify("same-password", second)


def test_hash_rejects_empty_password(hasher) -> None:
    with pytest.raises(EmptyPasswordError) as exc_info:
        hasher.hash("")
    assert exc_info.value.code is ErrorCode.HASHING_FAILED


@pytest.mark.parametrize("field", ["memory_cost_kb", "time_cost", "parallelism", "hash_length"])
def test_hash_rejects_non_positive_params(hasher, fast_argon2, field) -> None:
    params = {
        "memory_cost_kb": fast_argon2.memory_cost_kb,
        "time_cost": fast_argon2.time_cost,
        "parallelism": fast_argon2.parallelism,
        "hash_length": fast_argon2.hash_length,
    }
    params[field] = 0
    with pytest.raises(InvalidHashParamsError):
        hasher.hash("password", Argon2Config(**params))


def test_invalid_params_are_hashing_errors() -> None:
    assert issubclass(InvalidHashParamsError, HashingError)
    with pytest.raises(HashingError):
        PasswordHasher(Argon2Config(time_cost=-1))


@pytest.mark.parametrize("encoded", ["", "not-a-hash", "$argon2id$v=19$garbage", None, 42])
def test_verify_never_raises_on_malformed_input(hasher, encoded) -> None:
    assert hasher.verify("password", encoded) is False


def test_verify_rejects_non_string_password(hasher) -> None:
    encoded = hasher.hash("password")
    assert hasher.verify(None, encoded) is False
    assert hasher.verify("", encoded) is False


def test_needs_rehash_detects_parameter_changes(hasher, fast_argon2) -> None:
    encoded = hasher.hash("password", fast_argon2)
    assert hasher.needs_rehash(encoded, fast_argon2) is False

    changed = [
        Argon2Config(16384, 1, 1, 32),
        Argon2Config(8192, 2, 1, 32),
        Argon2Config(8192, 1, 2, 32),
        Argon2Config(8192, 1, 1, 16),
    ]
    for config in changed:
        assert hasher.needs_rehash(encoded, config) is True


def test_needs_rehash_for_unparseable_hash(hasher) -> None:
    assert hasher.needs_rehash("plaintext") is True


def test_verify_uses_embedded_parameters(fast_argon2) -> None:
    old = PasswordHasher(fast_argon2)
    new = PasswordHasher(Argon2Config(16384, 2, 1, 32))
    encoded = old.hash("password")
    assert new.verify("password", encoded) is True
    assert new.needs_rehash(encoded) is True


def test_strength_strong_password(hasher) -> None:
    result = hasher.score_strength("Tr0ub4dor&3xyz")
    assert result.score == c.MAX_STRENGTH_SCORE
    assert result.is_valid is True
    assert result.feedback == ("Password meets strength requirements",)


def test_strength_weak_password_lists_every_gap(hasher) -> None:
    result = hasher.score_strength("aaa")
    # lowercase only; the run of three costs the repetition point too
    assert result.score == 1
    assert result.is_valid is False
    assert "Password must be at least 8 characters long" in result.feedback
    assert "Password must contain uppercase letters" in result.feedback
    assert "Password should not contain repeated characters" in result.feedback
    assert len(result.feedback) == 6


def test_strength_threshold_ignores_feedback(hasher) -> None:
    # Misses only the 12-character point: score 6 is valid
    result = hasher.score_strength("Ab3$efgh")
    assert result.score == 6
    assert result.is_valid is True


def test_strength_custom_threshold(hasher) -> None:
    assert hasher.score_strength("Ab3$efgh", min_score=7).is_valid is False


def test_generate_secure_password_has_every_class(hasher) -> None:
    password = generate_secure_password(16)
    assert len(password) == 16
    assert any(ch.isupper() for ch in password)
    assert any(ch.islower() for ch in password)
    assert any(ch.isdigit() for ch in password)
    assert any(ch in c.PASSWORD_SYMBOLS for ch in password)


def test_generate_secure_password_minimum_length() -> None:
    with pytest.raises(ValueError):
        generate_secure_password(3)


def test_hashing_pool_roundtrip(hashing_pool) -> None:
    encoded = hashing_pool.hash("pooled-password", timeout=30)
    assert hashing_pool.verify("pooled-password", encoded, timeout=30) is True
    assert hashing_pool.needs_rehash(encoded) is False


def test_hashing_pool_propagates_errors(hashing_pool) -> None:
    with pytest.raises(EmptyPasswordError):
        hashing_pool.hash("")


def test_hashing_pool_timeout_is_recoverable(hasher) -> None:
    slow = Argon2Config(memory_cost_kb=65536, time_cost=10, parallelism=1, hash_length=32)
    with HashingPool(hasher, max_workers=1) as pool:
        with pytest.raises(HashingTimeoutError) as exc_info:
            pool.hash("password", slow, timeout=0.001)
    assert exc_info.value.recoverable is True


def test_verify_returns_false_for_unencodable_password(hasher) -> None:
    encoded = hasher.hash("password")
    assert hasher.verify("\ud800", encoded) is False


def test_hash_rejects_unencodable_password(hasher) -> None:
    with pytest.raises(HashingError) as excinfo:
        hasher.hash("pass\ud800word")
    assert excinfo.value.code is ErrorCode.HASHING_FAILED


def test_hasher_from_config() -> None:
    config = PasswordConfig(memory_cost_kb=8192, time_cost=1, parallelism=1, min_strength_score=4)
    hasher = PasswordHasher.from_config(config)
    assert hasher.config == Argon2Config(memory_cost_kb=8192, time_cost=1, parallelism=1)
    assert hasher.score_strength("abcdefgh1").score == 4
    assert hasher.score_strength("abcdefgh1").is_valid is True


def test_hashing_pool_from_config() -> None:
    pool = HashingPool.from_config(PasswordConfig(memory_cost_kb=8192, time_cost=1, hashing_workers=3))
    try:
        assert pool.max_workers == 3
        assert pool.hasher.config.time_cost == 1
    finally:
        pool.shutdown()
