from datetime import timedelta

import pytest

from auth.security import (
    create_access_token, create_refresh_token, decode_access_token, decode_refresh_token,
    decrypt_data, encrypt_data, generate_session_key, get_password_hash, validate_password, verify_password
)
from core.validators import contains_pattern, normalize_email, normalize_register_no, sanitize_filename
from storage.s3_paths import completion_photo_key, report_photo_key


@pytest.mark.parametrize(
    ('password', 'min_length', 'valid'),
    [
        ('Secret@123', 6, True),
        ('Ab@12', 6, False),
        ('Ab@1234', 8, False),
        ('Secret123', 6, False),
        ('Secret@abc', 6, False),
        ('A@1' + 'x' * 80, 6, False),
    ],
)
def test_validate_password(password, min_length, valid) -> None:
    assert validate_password(password, min_length=min_length)[0] is valid


def test_password_hash_round_trip() -> None:
    hashed = get_password_hash('Secret@123')

    assert verify_password('Secret@123', hashed)
    assert not verify_password('Secret@124', hashed)


def test_access_and_refresh_tokens_are_not_interchangeable() -> None:
    access = create_access_token({'sub': '1', 'sid': 4})
    refresh = create_refresh_token({'sub': '1', 'sid': 4})

    assert decode_access_token(access)['sid'] == 4
    assert decode_refresh_token(refresh)['sub'] == '1'
    assert decode_access_token(refresh) is None
    assert decode_refresh_token(access) is None


def test_expired_access_token_is_rejected() -> None:
    token = create_access_token({'sub': '1', 'sid': 4}, expires_delta=timedelta(seconds=-1))

    assert decode_access_token(token) is None


def test_session_key_is_stored_encrypted() -> None:
    session_key, encrypted_key, session_hash = generate_session_key()

    assert encrypted_key != session_key
    assert decrypt_data(encrypted_key) == session_key
    assert len(session_hash) == 64
    assert decrypt_data(encrypt_data('hello')) == 'hello'


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [(' Asha@Campus.TEST ', 'asha@campus.test'), ('dean@campus.test', 'dean@campus.test')],
)
def test_normalize_email(raw, expected) -> None:
    assert normalize_email(raw) == expected


def test_normalize_register_no_strips_whitespace() -> None:
    assert normalize_register_no(' 41110123 ') == '41110123'


@pytest.mark.parametrize(
    ('filename', 'prefix', 'suffix'),
    [('Broken Tap.PNG', 'reports/', '.png'), (None, 'reports/', '.jpg'), ('../../etc/x.jpeg', 'reports/', '.jpeg')],
)
def test_report_photo_keys(filename, prefix, suffix) -> None:
    key = report_photo_key(filename)

    assert key.startswith(prefix)
    assert key.endswith(suffix)
    assert '..' not in key


def test_completion_keys_are_unique() -> None:
    assert completion_photo_key('done.jpg') != completion_photo_key('done.jpg')
    assert completion_photo_key('done.jpg').startswith('completions/')


def test_sanitize_filename_drops_path_parts() -> None:
    assert '/' not in sanitize_filename('../../etc/passwd')


@pytest.mark.parametrize(
    ('term', 'pattern'),
    [('drain', '%drain%'), ('50%', '%50\\%%'), ('lost_item', '%lost\\_item%'), ('a\\b', '%a\\\\b%')],
)
def test_contains_pattern_escapes_wildcards(term, pattern) -> None:
    assert contains_pattern(term) == pattern
