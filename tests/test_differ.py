import pytest

from consul_acl_sync.core.differ import calculate_diff
from consul_acl_sync.core.errors import DirectoryLookupError, ErrorKind
from consul_acl_sync.core.models import AclConfig, Policy, PolicyRef, Token

RULES = 'key "app/" { policy = "write" }'


def test_everything_missing_is_created(directory):
    desired = AclConfig(
        policies=(Policy(name="a", rules=RULES), Policy(name="b", rules=RULES)),
        tokens=(Token(description="t", policy_refs=(PolicyRef.by_name("a"),)),),
    )
    diff = calculate_diff(directory, desired)

    assert [p.name for p in diff.policies_to_create] == ["a", "b"]
    assert [t.description for t in diff.tokens_to_create] == ["t"]
    assert not diff.policies_to_update and not diff.tokens_to_update
    assert directory.writes == []


def test_in_sync_directory_yields_empty_diff(make_directory):
    d = make_directory(
        policies=[Policy(name="a", rules=RULES + "\r\n", datacenters=["dc2", "dc1"])],
        tokens=[Token(description="t", policy_refs=(PolicyRef.by_name("a"),))],
    )
    desired = AclConfig(
        policies=(Policy(name="a", rules=RULES, datacenters=["dc1", "dc2"]),),
        tokens=(Token(description="t", policy_refs=(PolicyRef.by_name("a"),)),),
    )
    diff = calculate_diff(d, desired)
    assert not diff.has_changes


def test_changed_policy_is_updated_with_current_id(make_directory):
    d = make_directory(policies=[Policy(name="a", rules=RULES, id="uuid-a")])
    desired = AclConfig(policies=(Policy(name="a", rules=RULES, description="new"),))

    diff = calculate_diff(d, desired)

    (update,) = diff.policies_to_update
    assert update.current.id == "uuid-a"
    assert update.desired.description == "new"
    assert diff.policies_to_create == ()


def test_changed_token_carries_current_accessor(make_directory):
    d = make_directory(
        tokens=[Token(description="t", policy_refs=(PolicyRef.by_name("a"),), accessor_id="acc-1")]
    )
    desired = AclConfig(
        tokens=(Token(description="t", policy_refs=(PolicyRef.by_name("a"), PolicyRef.by_name("b"))),)
    )

    diff = calculate_diff(d, desired)

    (update,) = diff.tokens_to_update
    assert update.current.accessor_id == "acc-1"
    assert update.desired.accessor_id == "acc-1"
    assert [r.key for r in update.desired.policy_refs] == ["a", "b"]


def test_only_declared_resources_are_looked_up(make_directory):
    d = make_directory(policies=[Policy(name="unmanaged", rules=RULES)])
    calculate_diff(d, AclConfig(policies=(Policy(name="a", rules=RULES),)))
    assert d.calls == [("lookup_policy_by_name", "a")]


def test_lookups_follow_declaration_order(directory):
    desired = AclConfig(
        policies=(Policy(name="z", rules=RULES), Policy(name="a", rules=RULES)),
        tokens=(Token(description="t2"), Token(description="t1")),
    )
    calculate_diff(directory, desired)
    assert directory.calls == [
        ("lookup_policy_by_name", "z"),
        ("lookup_policy_by_name", "a"),
        ("lookup_token_by_description", "t2"),
        ("lookup_token_by_description", "t1"),
    ]


def test_lookup_failure_aborts_whole_diff(directory):
    directory.fail("lookup_policy_by_name", "b", DirectoryLookupError("boom", status=500))
    desired = AclConfig(
        policies=(Policy(name="a", rules=RULES), Policy(name="b", rules=RULES), Policy(name="c", rules=RULES)),
        tokens=(Token(description="t"),),
    )

    with pytest.raises(DirectoryLookupError) as ei:
        calculate_diff(directory, desired)

    assert "failed to check policy 'b'" in str(ei.value)
    assert ei.value.kind is ErrorKind.LOOKUP
    assert ei.value.status == 500
    assert directory.calls == [("lookup_policy_by_name", "a"), ("lookup_policy_by_name", "b")]
    assert directory.writes == []


def test_token_lookup_failure_names_the_token(directory):
    directory.fail("lookup_token_by_description", "t", DirectoryLookupError("down"))
    with pytest.raises(DirectoryLookupError) as ei:
        calculate_diff(directory, AclConfig(tokens=(Token(description="t"),)))
    assert "failed to check token 't'" in str(ei.value)
