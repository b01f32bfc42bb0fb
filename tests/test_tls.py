import pytest

from logcache.tls import TLS


def test_empty_config_has_no_credential():
    assert TLS().has_any_credential() is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"ca_path": "/certs/ca.crt"},
        {"cert_path": "/certs/server.crt"},
        {"key_path": "/certs/server.key"},
    ],
)
def test_any_single_path_counts_as_credential(kwargs):
    assert TLS(**kwargs).has_any_credential() is True


def test_all_paths_set_counts_as_credential():
    config = TLS("/certs/ca.crt", "/certs/server.crt", "/certs/server.key")
    assert config.has_any_credential() is True