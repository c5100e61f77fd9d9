import argparse
import random

import pytest

from postctl.cli_shared import GlobalOpts, OpError, UsageError
from postctl.host import HostError, PostTypeInfo
from postctl.post_commands import (
    cmd_post_create,
    cmd_post_delete,
    cmd_post_delete_many,
    cmd_post_generate,
    cmd_post_update,
    generate_posts,
    next_position,
)


def _g() -> GlobalOpts:
    return GlobalOpts(db_path="/tmp/postctl-test.sqlite", quiet=True)


class FakeHost:
    def __init__(self, *, types=None, users=None, total=0):
        self.types = types if types is not None else {
            "post": PostTypeInfo(name="post", label="Post", hierarchical=False),
            "page": PostTypeInfo(name="page", label="Page", hierarchical=True),
        }
        self.users = users or {}
        self.total = total
        self.calls: list[tuple] = []
        self.rows: dict[int, dict] = {}
        self.next_id = 100
        self.create_result = None
        self.update_result = True
        self.delete_failures: set[int] = set()
        self.delete_error: Exception | None = None
        self.query_result: list[int] = []
        self.closed = False

    def create_post(self, fields, strict=True):
        self.calls.append(("create_post", dict(fields), strict))
        if isinstance(self.create_result, Exception):
            raise self.create_result
        return self.create_result if self.create_result is not None else 42

    def update_post(self, fields):
        self.calls.append(("update_post", dict(fields)))
        return self.update_result

    def delete_post(self, post_id, force=False):
        self.calls.append(("delete_post", post_id, force))
        if self.delete_error is not None:
            raise self.delete_error
        return post_id not in self.delete_failures

    def query_posts(self, *, post_type=None, post_author=None, post_status=None, limit=-1):
        self.calls.append(("query_posts", post_type, post_author, post_status, limit))
        return list(self.query_result)

    def resolve_user(self, login):
        self.calls.append(("resolve_user", login))
        return self.users.get(login)

    def post_type_info(self, name):
        return self.types.get(name)

    def count_posts(self, post_type):
        self.calls.append(("count_posts", post_type))
        return self.total

    def bulk_insert(self, fields):
        self.calls.append(("bulk_insert", dict(fields)))
        post_id = self.next_id
        self.next_id += 1
        self.rows[post_id] = dict(fields)
        return post_id

    def close(self):
        self.closed = True

    def mutations(self):
        return [c for c in self.calls if c[0] in {"create_post", "update_post", "delete_post", "bulk_insert"}]


class ScriptedRng:
    def __init__(self, values):
        self.values = list(values)
        self.draws: list[tuple[int, int]] = []

    def randint(self, a, b):
        self.draws.append((a, b))
        value = self.values.pop(0)
        assert a <= value <= b
        return value


@pytest.fixture
def host(monkeypatch):
    fake = FakeHost()
    monkeypatch.setattr("postctl.post_commands.build_host", lambda _g: fake)
    return fake


def test_cmd_post_create_forwards_fields_strictly(host, capsys):
    args = argparse.Namespace(fields={"post_title": "Hello", "post_status": "publish"}, porcelain=False)
    assert cmd_post_create(args, _g()) == 0

    assert host.calls == [("create_post", {"post_title": "Hello", "post_status": "publish"}, True)]
    assert capsys.readouterr().out == "Success: Created post 42.\n"
    assert host.closed is True


def test_cmd_post_create_porcelain_prints_bare_id(host, capsys):
    host.create_result = 7
    args = argparse.Namespace(fields={"post_title": "Hello"}, porcelain=True)
    assert cmd_post_create(args, _g()) == 0
    assert capsys.readouterr().out == "7\n"


def test_cmd_post_create_surfaces_host_error(host, capsys):
    host.create_result = HostError("Content, title, and excerpt are empty.")
    args = argparse.Namespace(fields={}, porcelain=False)
    with pytest.raises(OpError, match="Content, title, and excerpt are empty."):
        cmd_post_create(args, _g())
    assert capsys.readouterr().out == ""


def test_cmd_post_update_requires_fields_before_touching_host(monkeypatch):
    built = {"n": 0}

    def fake_build_host(_g):
        built["n"] += 1
        return FakeHost()

    monkeypatch.setattr("postctl.post_commands.build_host", fake_build_host)
    args = argparse.Namespace(post_id="5", fields={})
    with pytest.raises(UsageError, match="Need some fields to update."):
        cmd_post_update(args, _g())
    assert built["n"] == 0


@pytest.mark.parametrize("raw_id", ["abc", "\u00b2", "-1", "1.5", ""])
def test_cmd_post_update_rejects_non_numeric_id(host, raw_id):
    args = argparse.Namespace(post_id=raw_id, fields={"post_title": "x"})
    with pytest.raises(UsageError, match="Post ID must be numeric."):
        cmd_post_update(args, _g())
    assert host.mutations() == []


def test_cmd_post_update_merges_id_into_fields(host, capsys):
    args = argparse.Namespace(post_id="5", fields={"post_title": "New"})
    assert cmd_post_update(args, _g()) == 0
    assert host.calls == [("update_post", {"post_title": "New", "ID": 5})]
    assert capsys.readouterr().out == "Success: Updated post 5.\n"


def test_cmd_post_update_falsy_result_is_failure(host):
    host.update_result = 0
    args = argparse.Namespace(post_id="5", fields={"post_title": "New"})
    with pytest.raises(OpError, match="Failed updating post 5."):
        cmd_post_update(args, _g())


def test_cmd_post_delete_trashes_by_default(host, capsys):
    args = argparse.Namespace(post_id="3", force=False)
    assert cmd_post_delete(args, _g()) == 0
    assert host.calls == [("delete_post", 3, False)]
    assert capsys.readouterr().out == "Success: Trashed post 3.\n"


def test_cmd_post_delete_force_purges(host, capsys):
    args = argparse.Namespace(post_id="3", force=True)
    assert cmd_post_delete(args, _g()) == 0
    assert host.calls == [("delete_post", 3, True)]
    assert capsys.readouterr().out == "Success: Deleted post 3.\n"


def test_cmd_post_delete_failure_returns_nonzero(host, capsys):
    host.delete_failures = {3}
    args = argparse.Namespace(post_id="3", force=False)
    assert cmd_post_delete(args, _g()) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Failed deleting post 3." in captured.err


@pytest.mark.parametrize("raw_id", ["abc", "²", "-3"])
def test_cmd_post_delete_rejects_non_numeric_id(host, raw_id):
    args = argparse.Namespace(post_id=raw_id, force=True)
    with pytest.raises(UsageError, match="Post ID must be numeric."):
        cmd_post_delete(args, _g())
    assert host.mutations() == []


def test_cmd_post_delete_host_error_becomes_op_error(host):
    host.delete_error = HostError("database error: database is locked")
    args = argparse.Namespace(post_id="3", force=False)
    with pytest.raises(OpError, match="database is locked"):
        cmd_post_delete(args, _g())
    assert host.closed is True


def test_cmd_post_delete_many_host_error_becomes_op_error(host, monkeypatch):
    def broken_query(**_kwargs):
        raise HostError("cannot open database 'x': unable to open database file")

    monkeypatch.setattr(host, "query_posts", broken_query)
    args = argparse.Namespace(post_type=None, post_author=None, post_status=None, force=False)
    with pytest.raises(OpError, match="cannot open database"):
        cmd_post_delete_many(args, _g())
    assert host.mutations() == []


def test_cmd_post_delete_many_passes_filters_through(host, capsys):
    host.query_result = [9, 8]
    args = argparse.Namespace(post_type=None, post_author="4", post_status=None, force=True)
    assert cmd_post_delete_many(args, _g()) == 0

    assert host.calls[0] == ("query_posts", None, "4", None, -1)
    assert host.calls[1:] == [("delete_post", 9, True), ("delete_post", 8, True)]
    assert capsys.readouterr().out == "Success: Deleted post 9.\nSuccess: Deleted post 8.\n"


def test_cmd_post_delete_many_empty_selection_fails_before_deleting(host):
    args = argparse.Namespace(post_type="page", post_author=None, post_status="draft", force=False)
    with pytest.raises(OpError, match="No posts to delete."):
        cmd_post_delete_many(args, _g())
    assert host.mutations() == []


def test_cmd_post_delete_many_isolates_per_item_failures(host, capsys):
    host.query_result = [1, 2, 3]
    host.delete_failures = {2}
    args = argparse.Namespace(post_type=None, post_author=None, post_status=None, force=False)
    with pytest.raises(OpError, match="Failed deleting 1 of 3 posts."):
        cmd_post_delete_many(args, _g())

    assert [c[1] for c in host.calls if c[0] == "delete_post"] == [1, 2, 3]
    captured = capsys.readouterr()
    assert captured.out.splitlines() == ["Success: Trashed post 1.", "Success: Trashed post 3."]
    assert captured.err.count("Failed deleting post") == 1
    assert "Failed deleting post 2." in captured.err


def test_generate_count_zero_inserts_nothing():
    fake = FakeHost(total=12)
    assert generate_posts(fake, count=0, post_type="page", rng=ScriptedRng([])) == []
    assert fake.mutations() == []


def test_generate_negative_count_inserts_nothing():
    fake = FakeHost()
    assert generate_posts(fake, count=-5, rng=ScriptedRng([])) == []
    assert fake.mutations() == []


def test_generate_unregistered_type_fails_without_side_effects():
    fake = FakeHost()
    with pytest.raises(UsageError, match="'widget' is not a registered post type."):
        generate_posts(fake, count=10, post_type="widget", rng=ScriptedRng([]))
    assert fake.calls == []


def test_cmd_post_generate_unregistered_type_fails_before_progress(host):
    args = argparse.Namespace(
        count=3,
        post_type="widget",
        post_status="publish",
        post_author=None,
        post_date=None,
        max_depth=1,
    )
    with pytest.raises(UsageError):
        cmd_post_generate(args, _g())
    assert host.mutations() == []


def test_generate_builds_sequential_fields_from_existing_total():
    fake = FakeHost(total=10)
    ids = generate_posts(
        fake,
        count=3,
        post_type="post",
        post_status="draft",
        post_date="2024-01-02 03:04:05",
        rng=ScriptedRng([]),
    )
    assert ids == [100, 101, 102]
    assert [fake.rows[i]["post_title"] for i in ids] == ["Post 10", "Post 11", "Post 12"]
    assert [fake.rows[i]["post_name"] for i in ids] == ["post-10", "post-11", "post-12"]
    row = fake.rows[100]
    assert row["post_type"] == "post"
    assert row["post_status"] == "draft"
    assert row["post_date"] == "2024-01-02 03:04:05"
    assert row["post_author"] == 0


def test_generate_flat_type_never_sets_parent():
    fake = FakeHost()
    rng = ScriptedRng([1] * 100)
    ids = generate_posts(fake, count=20, post_type="post", max_depth=5, rng=rng)
    assert all(fake.rows[i]["post_parent"] == 0 for i in ids)
    assert rng.draws == []


def test_generate_resolves_author_login_and_passes_unknown_through():
    fake = FakeHost(users={"alice": 3})
    ids = generate_posts(fake, count=1, post_author="alice", rng=ScriptedRng([]))
    assert fake.rows[ids[0]]["post_author"] == 3

    ids = generate_posts(fake, count=1, post_author="nobody", rng=ScriptedRng([]))
    assert fake.rows[ids[0]]["post_author"] == "nobody"


def test_next_position_first_post_stays_at_root():
    # coin A says child but there is no previous post; coin B misses
    rng = ScriptedRng([1, 3])
    assert next_position(rng, depth=1, parent=0, previous_id=None, max_depth=3) == (1, 0)


def test_next_position_descends_under_previous_post():
    rng = ScriptedRng([1])
    assert next_position(rng, depth=1, parent=0, previous_id=55, max_depth=2) == (2, 55)
    assert rng.draws == [(1, 2)]


def test_next_position_at_max_depth_checks_reset():
    rng = ScriptedRng([1, 7])
    assert next_position(rng, depth=2, parent=55, previous_id=56, max_depth=2) == (1, 0)
    assert rng.draws == [(1, 2), (1, 10)]


def test_next_position_carries_over_when_no_coin_hits():
    rng = ScriptedRng([2, 1])
    assert next_position(rng, depth=2, parent=55, previous_id=56, max_depth=3) == (2, 55)


def test_generate_hierarchical_walk_with_scripted_coins():
    fake = FakeHost()
    # post 1: A=2 miss, B=1 miss  -> root
    # post 2: A=1 hit             -> child of post 1
    # post 3: A=1 (depth max), B=3 -> sibling of post 2
    # post 4: A=2, B=7            -> reset to root
    rng = ScriptedRng([2, 1, 1, 1, 3, 2, 7])
    ids = generate_posts(fake, count=4, post_type="page", max_depth=2, rng=rng)
    parents = [fake.rows[i]["post_parent"] for i in ids]
    assert parents == [0, ids[0], ids[0], 0]
    assert rng.values == []


def _depth(rows, post_id):
    depth = 1
    parent = rows[post_id]["post_parent"]
    while parent:
        depth += 1
        parent = rows[parent]["post_parent"]
    return depth


@pytest.mark.parametrize("max_depth", [1, 2, 4])
def test_generate_hierarchical_parents_point_backwards_within_run(max_depth):
    fake = FakeHost()
    ids = generate_posts(fake, count=100, post_type="page", max_depth=max_depth, rng=random.Random(1234))
    seen: set[int] = set()
    for post_id in ids:
        parent = fake.rows[post_id]["post_parent"]
        assert parent == 0 or parent in seen
        assert _depth(fake.rows, post_id) <= max_depth
        seen.add(post_id)
    if max_depth == 1:
        assert all(fake.rows[i]["post_parent"] == 0 for i in ids)


def test_cmd_post_generate_uses_injected_rng_and_defaults(host, monkeypatch):
    monkeypatch.setattr("postctl.post_commands.build_rng", lambda: ScriptedRng([]))
    args = argparse.Namespace(
        count=3,
        post_type="post",
        post_status="publish",
        post_author=None,
        post_date=None,
        max_depth=1,
    )
    assert cmd_post_generate(args, _g()) == 0
    inserts = [c[1] for c in host.calls if c[0] == "bulk_insert"]
    assert [f["post_title"] for f in inserts] == ["Post 0", "Post 1", "Post 2"]
    assert all(f["post_status"] == "publish" for f in inserts)
    assert all(f["post_date"] for f in inserts)
