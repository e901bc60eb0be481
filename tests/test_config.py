"""Unit tests for configuration resolution."""

import pytest

from gen_http_proxy.config import (
    Address,
    Disabled,
    FallbackPolicy,
    Integer,
    Raw,
    normalize_number,
    parse_address,
    positive_seconds,
    resolve_config,
)
from gen_http_proxy.exceptions import ConfigurationError


# ============================================================================
# normalize_number
# ============================================================================

def test_normalize_valid_integer():
    assert normalize_number("8080") == Integer(8080)
    assert normalize_number("0") == Integer(0)


def test_normalize_negative_disables():
    assert normalize_number("-5") == Disabled()
    assert normalize_number("-1") == Disabled()


def test_normalize_unparseable_passes_through():
    assert normalize_number("abc") == Raw("abc")
    assert normalize_number("") == Raw("")


def test_normalize_uses_leading_integer():
    assert normalize_number("12abc") == Integer(12)
    assert normalize_number(" 42") == Integer(42)


def test_positive_seconds():
    assert positive_seconds(Integer(60)) == 60
    assert positive_seconds(Integer(0)) is None
    assert positive_seconds(Disabled()) is None
    assert positive_seconds(Raw("soon")) is None


# ============================================================================
# Addresses
# ============================================================================

def test_parse_address_full():
    assert parse_address("host2:9999", "localhost", "3000") == Address("host2", Integer(9999))


def test_parse_address_defaults():
    assert parse_address(":8080", "0.0.0.0", "10000") == Address("0.0.0.0", Integer(8080))
    assert parse_address("myhost", "localhost", "3000") == Address("myhost", Integer(3000))
    assert parse_address("myhost:", "localhost", "3000") == Address("myhost", Integer(3000))


def test_port_number_rejects_unusable_ports():
    assert Address("h", Integer(80)).port_number("listen") == 80
    with pytest.raises(ConfigurationError, match="Negative listen port"):
        Address("h", Disabled()).port_number("listen")
    with pytest.raises(ConfigurationError, match="Invalid target port 'http'"):
        Address("h", Raw("http")).port_number("target")


# ============================================================================
# resolve_config
# ============================================================================

def test_defaults():
    config = resolve_config({}, [])

    assert config.listen == Address("0.0.0.0", Integer(10000))
    assert config.target == Address("localhost", Integer(3000))
    assert config.secure is False
    assert config.keyfile == "./server.key"
    assert config.certfile == "./server.crt"
    assert config.use_cookies is True
    assert config.session_timeout == Integer(60)
    assert config.cookie_max_age == 60
    assert config.fallback is FallbackPolicy.STATIC
    assert config.static_folder == "./static"
    assert len(config.token) == 32


def test_zero_args_keep_environment():
    env = {"server": "127.0.0.1:7000", "target": "backend:5000"}
    config = resolve_config(env, [])

    assert config.listen == Address("127.0.0.1", Integer(7000))
    assert config.target == Address("backend", Integer(5000))


def test_one_arg_overrides_target_only():
    env = {"server": "127.0.0.1:7000", "target": "backend:5000"}
    config = resolve_config(env, ["host2:9999"])

    assert config.listen == Address("127.0.0.1", Integer(7000))
    assert config.target == Address("host2", Integer(9999))


def test_two_args_override_listen_and_target():
    env = {"server": "127.0.0.1:7000", "target": "backend:5000"}
    config = resolve_config(env, ["0.0.0.0:8080", "host2:9999"])

    assert config.listen == Address("0.0.0.0", Integer(8080))
    assert config.target == Address("host2", Integer(9999))


def test_three_args_is_usage_error():
    with pytest.raises(ConfigurationError, match="usage"):
        resolve_config({}, ["a:1", "b:2", "c:3"])


def test_address_and_port_env():
    config = resolve_config({"address": "127.0.0.1", "port": "9000"}, [])
    assert config.listen == Address("127.0.0.1", Integer(9000))

    config = resolve_config({"port": "9000"}, [])
    assert config.listen == Address("0.0.0.0", Integer(9000))


def test_server_env_wins_over_address_and_port():
    config = resolve_config({"server": "1.2.3.4:1", "address": "127.0.0.1", "port": "9000"}, [])
    assert config.listen == Address("1.2.3.4", Integer(1))


def test_token_from_environment():
    assert resolve_config({"token": "abc"}, []).token == "abc"


def test_token_store_lives_in_config():
    from gen_http_proxy import auth, config

    assert auth.resolve_token is config.resolve_token
    assert len(resolve_config({}, []).token) == 32


def test_blank_token_disables_auth():
    config = resolve_config({"token": ""}, [])
    assert config.token == ""
    assert config.auth_enabled is False


def test_flags():
    env = {"secure": "1", "usecookies": "false", "staticserver": "0"}
    config = resolve_config(env, [])

    assert config.secure is True
    assert config.use_cookies is False
    assert config.fallback is FallbackPolicy.REJECT


def test_flags_only_accept_true_or_one():
    config = resolve_config({"secure": "yes"}, [])
    assert config.secure is False


def test_session_timeout_variants():
    assert resolve_config({"sessiontimeout": "300"}, []).cookie_max_age == 300
    assert resolve_config({"sessiontimeout": "-1"}, []).session_timeout == Disabled()
    assert resolve_config({"sessiontimeout": "-1"}, []).cookie_max_age is None
    assert resolve_config({"sessiontimeout": "0"}, []).cookie_max_age is None
    assert resolve_config({"sessiontimeout": "never"}, []).session_timeout == Raw("never")


def test_explicit_fallback_policy():
    assert resolve_config({"fallback": "login"}, []).fallback is FallbackPolicy.LOGIN_FORM
    assert resolve_config({"fallback": "reject", "staticserver": "true"}, []).fallback is FallbackPolicy.REJECT
    assert resolve_config({"fallback": "STATIC", "staticserver": "0"}, []).fallback is FallbackPolicy.STATIC


def test_unknown_fallback_policy():
    with pytest.raises(ConfigurationError, match="Unknown fallback policy"):
        resolve_config({"fallback": "teapot"}, [])


def test_config_is_immutable():
    config = resolve_config({}, [])
    with pytest.raises(AttributeError):
        config.token = "other"
