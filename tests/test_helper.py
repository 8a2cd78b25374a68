from claimmapper.config import ClaimConfig
from claimmapper.helper import append_default_claims, has_role
from claimmapper.models import ContextClaim


def test_has_role():
    assert has_role(["a", "b"], ["b", "c"]) is True
    assert has_role(["a"], ["b"]) is False
    assert has_role([], ["b"]) is False
    assert has_role(["a"], []) is False


def test_appends_for_matching_context_and_role():
    existing = {"context": "ctx", "claims": [ContextClaim(1, "read", 1, "ctx")]}
    defaults = [ClaimConfig(roles=["admin"], context="ctx", claims=["read", "write"])]
    append_default_claims("ctx", defaults, existing, ["admin"])
    assert [c.claim for c in existing["claims"]] == ["read", "write"]
    added = existing["claims"][1]
    assert (added.id, added.row_ver, added.context) == (0, 0, "ctx")


def test_wildcard_context_applies():
    existing = {"context": "any", "claims": []}
    defaults = [ClaimConfig(roles=["user"], context="*", claims=["base"])]
    append_default_claims("any", defaults, existing, ["user"])
    assert existing["claims"] == [ContextClaim(0, "base", 0, "any")]


def test_other_context_or_missing_role_is_ignored():
    existing = {"context": "ctx", "claims": []}
    defaults = [
        ClaimConfig(roles=["admin"], context="other", claims=["x"]),
        ClaimConfig(roles=["admin"], context="ctx", claims=["y"]),
    ]
    append_default_claims("ctx", defaults, existing, ["user"])
    assert existing["claims"] == []


def test_duplicate_defaults_added_once():
    existing = {"context": "ctx", "claims": None}
    defaults = [
        ClaimConfig(roles=["r"], context="ctx", claims=["x"]),
        ClaimConfig(roles=["r"], context="*", claims=["x", "x"]),
    ]
    append_default_claims("ctx", defaults, existing, ["r"])
    assert [c.claim for c in existing["claims"]] == ["x"]


def test_no_defaults_keeps_claims():
    claim = ContextClaim(2, "keep", 3, "ctx")
    existing = {"context": "ctx", "claims": [claim]}
    append_default_claims("ctx", [], existing, ["r"])
    assert existing["claims"] == [claim]