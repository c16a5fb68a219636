import pytest

from commit_manager.exceptions import ValidationError
from commit_manager.models import (
    BranchInfo,
    CommitSummary,
    LocalRepository,
    OperationResult,
    RemoteRepository,
    TagInfo,
    WorkingTreeStatus,
    repository_ref_from_dict,
)


def test_repository_ref_from_dict_variants():
    assert repository_ref_from_dict({"kind": "local", "path": " /tmp/repo "}) == LocalRepository("/tmp/repo")
    assert repository_ref_from_dict({"kind": "remote", "owner": "octo", "repo": "hello"}) == RemoteRepository(
        "octo", "hello"
    )
    # kind is inferred when omitted
    assert repository_ref_from_dict({"path": "/srv/x"}) == LocalRepository("/srv/x")
    assert repository_ref_from_dict({"owner": "a", "repo": "b"}) == RemoteRepository("a", "b")
    assert repository_ref_from_dict(None) is None
    assert repository_ref_from_dict({}) is None


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"kind": "local", "path": ""}, "path"),
        ({"kind": "remote", "repo": "x"}, "owner"),
        ({"kind": "remote", "owner": "x"}, "repo"),
        ({"kind": "svn", "path": "/x"}, "kind"),
    ],
)
def test_repository_ref_from_dict_rejects_bad_shapes(payload, field):
    with pytest.raises(ValidationError) as excinfo:
        repository_ref_from_dict(payload)
    assert excinfo.value.field == field


def test_repository_refs_are_hashable_and_labelled():
    local = LocalRepository("/tmp/repo")
    remote = RemoteRepository("octo", "hello")
    assert {local: 1, remote: 2}[remote] == 2
    assert local.kind == "local" and local.label == "/tmp/repo"
    assert remote.kind == "remote" and remote.label == "octo/hello"
    assert remote.to_dict() == {"kind": "remote", "owner": "octo", "repo": "hello"}


def test_commit_summary_abbreviated_hash_is_display_only():
    summary = CommitSummary(hash="0123456789abcdef", message="m", author_name="a", date="d")
    data = summary.to_dict()
    assert data["hash"] == "0123456789abcdef"
    assert data["abbreviatedHash"] == "0123456"
    assert "refs" not in data


def test_value_shapes_are_camel_case():
    assert BranchInfo(name="main", commit="abc1234", current=True).to_dict() == {
        "name": "main",
        "current": True,
        "commit": "abc1234",
        "isRemote": False,
    }
    assert TagInfo(name="v1", hash="abc1234").to_dict()["isAnnotated"] is None
    status = WorkingTreeStatus(current="main", untracked=("new.txt",))
    assert status.is_clean is False
    assert status.to_dict()["untracked"] == ["new.txt"]
    assert WorkingTreeStatus(current="main").to_dict()["isClean"] is True


def test_operation_result_data_never_overrides_success():
    result = OperationResult.ok("done", branch="main", success="ignored")
    assert result.to_dict() == {"success": True, "message": "done", "branch": "main"}
    assert OperationResult.failed("nope").to_dict() == {"success": False, "message": "nope"}
