"""
Test configuration from environment variables

Run with: python3 tests/test_config.py
"""

import os

import pytest

from clarifier.config import ClarifierConfig, DEFAULT_REGISTRY_PATH


def test_defaults():
    config = ClarifierConfig.from_env({})

    assert config.registry_path == DEFAULT_REGISTRY_PATH
    assert os.path.exists(config.registry_path)
    assert config.session_ttl_seconds == 1800
    assert config.persistence_dir is None
    assert config.log_level == 'INFO'
    assert config.debug is False


def test_overrides():
    config = ClarifierConfig.from_env({
        'CLARIFIER_REGISTRY_PATH': '/tmp/registry.json',
        'CLARIFIER_SESSION_TTL_SECONDS': '60',
        'CLARIFIER_PERSISTENCE_DIR': '/tmp/sessions',
        'CLARIFIER_LOG_LEVEL': 'debug',
        'CLARIFIER_PORT': '8080',
        'CLARIFIER_DEBUG': 'true',
    })

    assert config.registry_path == '/tmp/registry.json'
    assert config.session_ttl_seconds == 60
    assert config.persistence_dir == '/tmp/sessions'
    assert config.log_level == 'DEBUG'
    assert config.port == 8080
    assert config.debug is True


@pytest.mark.parametrize('ttl', ['soon', '0', '-5'])
def test_invalid_ttl(ttl):
    with pytest.raises(ValueError, match='CLARIFIER_SESSION_TTL_SECONDS'):
        ClarifierConfig.from_env({'CLARIFIER_SESSION_TTL_SECONDS': ttl})


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
