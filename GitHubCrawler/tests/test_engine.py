"""
Tests for the crawl engine.
"""

import logging
from unittest.mock import Mock

from core.entities import Classification, RepoBranch, User
from core.errors import StorageError, TransportError
from core.tasks import (
    TaskKind,
    emoji_task,
    followers_task,
    gitignore_list_task,
    org_members_task,
    org_task,
    repo_branches_task,
    user_task,
)
from infrastructure.memory_storage import MemoryStorage

from fakes import API, NOW, FakeClock, FakeHttp, drain, make_engine, make_response


def branch_nodes(*names):
    return [{"name": name, "commit": {"sha": f"sha-{name}"}, "protected": False} for name in names]


class TestDetailResponses:
    """Detail bodies become one record."""

    def test_user_round_trip(self):
        """A user detail maps to a User and is stored exactly once."""
        http = FakeHttp({f"{API}/users/alice": [make_response(200, {"login": "alice", "id": 1})]})
        storage = Mock(wraps=MemoryStorage())
        engine = make_engine(http, storage=storage, clock=FakeClock())

        outcome = engine.dispatch(user_task("alice"))

        assert outcome.classification == Classification.DETAIL
        assert outcome.records_written == 1
        storage.create_user.assert_called_once_with(User(login="alice", user_id=1))

    def test_user_spawns_follows_orgs_and_repos(self):
        """A stored user schedules its followers, followed accounts, organizations and repositories."""
        http = FakeHttp({f"{API}/users/alice": [make_response(200, {"login": "alice", "id": 1})]})
        engine = make_engine(http, clock=FakeClock())

        outcome = engine.dispatch(user_task("alice"))

        queued = [engine.queue.get() for _ in range(engine.queue.qsize())]
        assert outcome.tasks_enqueued == 4
        assert {task.kind for task in queued} == {
            TaskKind.FOLLOWERS,
            TaskKind.FOLLOWING,
            TaskKind.ORG_LIST,
            TaskKind.REPO_LIST,
        }
        assert all(task.origin == TaskKind.USER for task in queued)

    def test_org_spawns_members(self):
        """An organization detail schedules its member listing."""
        http = FakeHttp({f"{API}/orgs/acme": [make_response(200, {"login": "acme", "id": 7})]})
        storage = MemoryStorage()
        engine = make_engine(http, storage=storage, clock=FakeClock())

        engine.dispatch(org_task("acme"))

        assert storage.orgs["acme"].org_id == 7
        assert engine.queue.get().kind == TaskKind.ORG_MEMBERS

    def test_dispatching_twice_is_idempotent(self):
        """Dispatching the same detail task twice leaves the same store state."""
        body = {"login": "alice", "id": 1, "name": "Alice", "followers": 3}
        once = MemoryStorage()
        twice = MemoryStorage()

        engine = make_engine(FakeHttp({f"{API}/users/alice": [make_response(200, body)]}),
                             storage=once, clock=FakeClock())
        engine.dispatch(user_task("alice"))

        engine = make_engine(FakeHttp({f"{API}/users/alice": [make_response(200, body)]}),
                             storage=twice, clock=FakeClock())
        engine.dispatch(user_task("alice"))
        engine.dispatch(user_task("alice"))

        assert once.users == twice.users
        assert twice.count_users() == 1

    def test_request_headers(self):
        """Requests carry the bearer token, user agent and timezone."""
        http = FakeHttp({f"{API}/users/alice": [make_response(200, {"login": "alice", "id": 1})]})
        engine = make_engine(http, tokens=("secret-token",), clock=FakeClock())

        engine.dispatch(user_task("alice"))

        method, url, headers = http.calls[0]
        assert method == "GET"
        assert url == f"{API}/users/alice"
        assert headers["Authorization"] == "Bearer secret-token"
        assert headers["User-Agent"] == engine.USER_AGENT
        assert headers["Time-Zone"] == engine.TIMEZONE

    def test_quota_recorded_from_headers(self):
        """The credential's quota follows the response headers."""
        http = FakeHttp({
            f"{API}/users/alice": [
                make_response(200, {"login": "alice", "id": 1}, remaining=42, reset=NOW + 99)
            ],
        })
        engine = make_engine(http, clock=FakeClock())

        engine.dispatch(user_task("alice"))

        snapshot = engine.pool.snapshot(0)
        assert snapshot.remaining == 42
        assert snapshot.limit == 5000
        assert snapshot.reset_at == NOW + 99


class TestPagination:
    """Listing responses and Link-header pagination."""

    def test_three_page_chain(self):
        """Three linked pages are fetched once each, in order."""
        first = f"{API}/repos/octo/repo/branches?per_page=100"
        second = f"{API}/repositories/1/branches?per_page=100&page=2"
        third = f"{API}/repositories/1/branches?per_page=100&page=3"
        http = FakeHttp({
            first: [make_response(200, branch_nodes("a", "b"),
                                  headers={"Link": f'<{second}>; rel="next", <{third}>; rel="last"'})],
            second: [make_response(200, branch_nodes("c", "d"),
                                   headers={"Link": f'<{third}>; rel="next", <{first}>; rel="first"'})],
            third: [make_response(200, branch_nodes("e"),
                                  headers={"Link": f'<{first}>; rel="first"'})],
        })
        backend = MemoryStorage()
        storage = Mock(wraps=backend)
        engine = make_engine(http, storage=storage, clock=FakeClock())

        engine.submit(repo_branches_task("octo/repo"))
        outcomes = drain(engine)

        assert http.urls == [first, second, third]
        assert [o.classification for o in outcomes] == [Classification.LISTING] * 3
        assert storage.create_repo_branches.call_count == 3
        assert sorted(backend.repo_branches) == [f"octo/repo:{n}" for n in "abcde"]
        assert backend.repo_branches["octo/repo:e"] == RepoBranch(
            repo="octo/repo", name="e", commit_sha="sha-e"
        )

    def test_malformed_element_is_skipped(self):
        """One bad element out of ten is skipped, the other nine are stored."""
        nodes = branch_nodes(*[f"b{i}" for i in range(10)])
        nodes[4] = {"commit": {"sha": "orphan"}}
        url = f"{API}/repos/octo/repo/branches?per_page=100"
        storage = MemoryStorage()
        engine = make_engine(FakeHttp({url: [make_response(200, nodes)]}),
                             storage=storage, clock=FakeClock())

        outcome = engine.dispatch(repo_branches_task("octo/repo"))

        assert outcome.classification == Classification.LISTING
        assert outcome.records_written == 9
        assert outcome.records_skipped == 1
        assert storage.count_repo_branches() == 9

    def test_followers_spawn_user_tasks(self):
        """Each follower becomes a user detail task; duplicates are not queued twice."""
        url = f"{API}/users/alice/followers?per_page=100"
        body = [{"login": "bob"}, {"login": "carol"}, {"login": "bob"}, {"id": 3}]
        engine = make_engine(FakeHttp({url: [make_response(200, body)]}), clock=FakeClock())

        outcome = engine.dispatch(followers_task("alice"))

        queued = [engine.queue.get() for _ in range(engine.queue.qsize())]
        assert outcome.tasks_enqueued == 2
        assert outcome.records_skipped == 1
        assert [task.subject for task in queued] == ["bob", "carol"]
        assert all(task.kind == TaskKind.USER for task in queued)

    def test_gitignore_list_spawns_info_tasks(self):
        """Template names become gitignore detail tasks."""
        url = f"{API}/gitignore/templates"
        engine = make_engine(FakeHttp({url: [make_response(200, ["Go", "Python"])]}),
                             clock=FakeClock())

        outcome = engine.dispatch(gitignore_list_task())

        queued = [engine.queue.get() for _ in range(engine.queue.qsize())]
        assert outcome.tasks_enqueued == 2
        assert [task.path for task in queued] == [
            "/gitignore/templates/Go",
            "/gitignore/templates/Python",
        ]

    def test_emojis_are_stored_as_one_batch(self):
        """The emoji object is written through a single batch call."""
        body = {"+1": "https://github.githubassets.com/images/icons/emoji/unicode/1f44d.png",
                "broken": None}
        storage = Mock(wraps=MemoryStorage())
        engine = make_engine(FakeHttp({f"{API}/emojis": [make_response(200, body)]}),
                             storage=storage, clock=FakeClock())

        outcome = engine.dispatch(emoji_task())

        assert outcome.records_written == 1
        assert outcome.records_skipped == 1
        storage.create_emoji.assert_called_once()

    def test_completed_resources_are_not_rescheduled(self):
        """Identifiers loaded from storage are not fetched again."""
        url = f"{API}/users/alice/followers?per_page=100"
        engine = make_engine(FakeHttp({url: [make_response(200, [{"login": "bob"}])]}),
                             clock=FakeClock())
        engine.mark_completed(TaskKind.USER, ["bob"])

        outcome = engine.dispatch(followers_task("alice"))

        assert outcome.tasks_enqueued == 0
        assert engine.queue.empty()


class TestFailures:
    """Retry and drop policy."""

    def test_rate_limited_task_succeeds_after_reset(self):
        """A 403 rate limit is retried and succeeds once the quota resets."""
        clock = FakeClock()
        reset = NOW + 60
        http = FakeHttp({
            f"{API}/users/alice": [
                make_response(403, {"message": "API rate limit exceeded for user."},
                              remaining=0, reset=reset),
                make_response(200, {"login": "alice", "id": 1}, reset=reset + 3600),
            ],
        })
        storage = MemoryStorage()
        engine = make_engine(http, storage=storage, clock=clock)

        first = engine.dispatch(user_task("alice"))
        retried = engine.queue.get()
        second = engine.dispatch(retried)

        assert first.classification == Classification.RETRY
        assert retried.attempt == 1
        assert second.classification == Classification.DETAIL
        assert clock.now >= reset
        assert storage.users["alice"].user_id == 1
        assert len(http.calls) == 2

    def test_secondary_rate_limit_honours_retry_after(self):
        """A 429 with Retry-After delays the retried task by at least that long."""
        clock = FakeClock()
        http = FakeHttp({
            f"{API}/users/alice": [
                make_response(429, {"message": "You have exceeded a secondary rate limit."},
                              headers={"Retry-After": "30"}),
                make_response(200, {"login": "alice", "id": 1}),
            ],
        })
        engine = make_engine(http, clock=clock)

        engine.dispatch(user_task("alice"))
        retried = engine.queue.get()
        outcome = engine.dispatch(retried)

        assert retried.not_before == NOW + 30
        assert clock.now >= NOW + 30
        assert outcome.classification == Classification.DETAIL

    def test_transport_error_dropped_after_max_retries(self):
        """Connection failures are retried with backoff, then dropped."""
        clock = FakeClock()
        http = FakeHttp({f"{API}/users/alice": [TransportError("connection reset")]})
        engine = make_engine(http, clock=clock, max_retries=2)

        engine.submit(user_task("alice"))
        outcomes = drain(engine)

        assert [o.classification for o in outcomes] == [
            Classification.RETRY,
            Classification.RETRY,
            Classification.DROPPED,
        ]
        assert len(http.calls) == 3
        assert engine.queue.empty()

    def test_not_found_is_dropped(self, caplog):
        """A 404 drops the task without retry."""
        engine = make_engine(FakeHttp(), clock=FakeClock())

        with caplog.at_level(logging.WARNING):
            outcome = engine.dispatch(user_task("ghost"))

        assert outcome.classification == Classification.DROPPED
        assert engine.queue.empty()
        assert "http 404" in caplog.text

    def test_forbidden_without_rate_limit_is_dropped(self):
        """A plain 403 (no quota signal) is not retried."""
        http = FakeHttp({
            f"{API}/orgs/acme/members?per_page=100": [
                make_response(403, {"message": "Must have admin rights to Repository."})
            ],
        })
        engine = make_engine(http, clock=FakeClock())

        outcome = engine.dispatch(org_members_task("acme"))

        assert outcome.classification == Classification.DROPPED
        assert engine.queue.empty()

    def test_invalid_json_is_malformed(self):
        """A body that is not JSON drops the task."""
        http = FakeHttp({f"{API}/users/alice": [make_response(200, "<html>oops</html>")]})
        engine = make_engine(http, clock=FakeClock())

        outcome = engine.dispatch(user_task("alice"))

        assert outcome.classification == Classification.MALFORMED
        assert engine.queue.empty()

    def test_storage_error_is_not_retried(self):
        """A failed write is reported once; the user's follow-ups are still scheduled."""
        http = FakeHttp({f"{API}/users/alice": [make_response(200, {"login": "alice", "id": 1})]})
        storage = Mock(wraps=MemoryStorage())
        storage.create_user.side_effect = StorageError("disk full")
        engine = make_engine(http, storage=storage, clock=FakeClock())

        outcome = engine.dispatch(user_task("alice"))

        queued = [engine.queue.get() for _ in range(engine.queue.qsize())]
        assert outcome.classification == Classification.STORAGE_FAILED
        assert outcome.error == "disk full"
        assert outcome.records_written == 0
        assert outcome.tasks_enqueued == 4
        assert TaskKind.USER not in {task.kind for task in queued}

    def test_storage_error_keeps_pagination_going(self):
        """A page whose write fails still links to the next page, which is stored."""
        first = f"{API}/repos/octo/repo/branches?per_page=100"
        second = f"{API}/repositories/1/branches?per_page=100&page=2"
        http = FakeHttp({
            first: [make_response(200, branch_nodes("a", "b"),
                                  headers={"Link": f'<{second}>; rel="next"'})],
            second: [make_response(200, branch_nodes("c", "d"))],
        })
        backend = MemoryStorage()
        storage = Mock(wraps=backend)
        writes = []

        def locked_once(branches):
            writes.append(branches)
            if len(writes) == 1:
                raise StorageError("locked")
            backend.create_repo_branches(branches)

        storage.create_repo_branches.side_effect = locked_once
        engine = make_engine(http, storage=storage, clock=FakeClock())

        engine.submit(repo_branches_task("octo/repo"))
        outcomes = drain(engine)

        assert http.urls == [first, second]
        assert [o.classification for o in outcomes] == [
            Classification.STORAGE_FAILED,
            Classification.LISTING,
        ]
        assert outcomes[0].tasks_enqueued == 1
        assert sorted(backend.repo_branches) == ["octo/repo:c", "octo/repo:d"]

    def test_stopped_engine_issues_no_request(self):
        """Once stopped, dispatch returns without touching the network."""
        http = FakeHttp()
        engine = make_engine(http, clock=FakeClock())
        engine.stop()

        outcome = engine.dispatch(user_task("alice"))

        assert outcome.classification == Classification.STOPPED
        assert http.calls == []
