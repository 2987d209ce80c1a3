import logging
import textwrap

import pytest

from consul_acl_sync.core.acl_config import load_acl_config
from consul_acl_sync.core.differ import calculate_diff
from consul_acl_sync.core.errors import ConfigError, ErrorKind
from consul_acl_sync.core.models import PolicyRef, Token


def _write(tmp_path, text):
    path = tmp_path / "consul-acl.yaml"
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_load_valid_config(tmp_path):
    path = _write(tmp_path, """
      policies:
        - name: app
          description: App policy
          rules: |
            key "app/" { policy = "write" }
          datacenters: [dc2, dc1]
        - name: ro
          rules: 'key "" { policy = "read" }'
      tokens:
        - description: app-token
          policies: [app, ro]
    """)
    cfg = load_acl_config(path)

    assert [p.name for p in cfg.policies] == ["app", "ro"]
    assert cfg.policies[0].datacenters == frozenset({"dc1", "dc2"})
    assert cfg.policies[0].id is None
    assert cfg.tokens[0].description == "app-token"
    assert cfg.tokens[0].policy_refs == (PolicyRef.by_name("app"), PolicyRef.by_name("ro"))


def test_empty_file_is_empty_config(tmp_path):
    cfg = load_acl_config(_write(tmp_path, ""))
    assert cfg.policies == () and cfg.tokens == ()


@pytest.mark.parametrize(
    "text, message",
    [
        ("policies:\n  - rules: x\n", "policy name cannot be empty"),
        ("policies:\n  - {name: a, rules: x}\n  - {name: a, rules: y}\n", "duplicate policy name: a"),
        ("policies:\n  - {name: a, rules: '   '}\n", "policy a has empty rules"),
        ("tokens:\n  - {description: t, policies: []}\n", "has no policies"),
        ("tokens:\n  - {policies: [a]}\n", "has no description"),
        (
            "tokens:\n  - {description: t, policies: [a]}\n  - {description: t, policies: [a]}\n",
            "duplicate token description: t",
        ),
        ("policies: {a: 1}\n", "'policies' must be a list"),
        ("- a\n- b\n", "must be a mapping"),
        ("policies:\n  - {name: a, rules: x, datacenters: dc1}\n", "'datacenters' must be a list"),
    ],
)
def test_invalid_configs(tmp_path, text, message):
    with pytest.raises(ConfigError) as ei:
        load_acl_config(_write(tmp_path, text))
    assert message in str(ei.value)
    assert ei.value.kind is ErrorKind.CONFIG


def test_yaml_syntax_error(tmp_path):
    with pytest.raises(ConfigError) as ei:
        load_acl_config(_write(tmp_path, "policies: [\n"))
    assert "failed to parse YAML" in str(ei.value)
    assert ei.value.cause is not None


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError) as ei:
        load_acl_config(tmp_path / "nope.yaml")
    assert "failed to read config file" in str(ei.value)


def test_undeclared_policy_reference_only_warns(tmp_path, caplog):
    path = _write(tmp_path, """
      tokens:
        - description: t
          policies: [global-management]
    """)
    with caplog.at_level(logging.WARNING, logger="cas.acl_config"):
        cfg = load_acl_config(path)
    assert cfg.tokens[0].policy_refs == (PolicyRef.by_name("global-management"),)
    assert "global-management" in caplog.text


def test_declared_keys_are_kept_verbatim(tmp_path, make_directory):
    path = _write(tmp_path, """
      policies:
        - name: ci
          rules: 'key "ci/" { policy = "read" }'
      tokens:
        - description: "ci token "
          policies: [ci]
    """)
    cfg = load_acl_config(path)
    assert cfg.tokens[0].description == "ci token "

    d = make_directory(
        policies=[cfg.policies[0]],
        tokens=[Token(description="ci token ", policy_refs=(PolicyRef.by_name("ci"),))],
    )
    diff = calculate_diff(d, cfg)
    assert not diff.has_changes
    assert ("lookup_token_by_description", "ci token ") in d.calls


def test_blank_token_description_is_rejected(tmp_path):
    with pytest.raises(ConfigError) as ei:
        load_acl_config(_write(tmp_path, "tokens:\n  - {description: '   ', policies: [a]}\n"))
    assert "has no description" in str(ei.value)
