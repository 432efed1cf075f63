"""
Tests for the Dashboard: session wiring, permission gating of every action,
and the task edit form.
"""
from datetime import datetime, timezone

import pytest

from taskboard.errors import AuthorizationError, NetworkError
from taskboard.schema import BoardRole, TaskStatus

from conftest import run


@pytest.fixture
def seeded(backend):
    backend.seed_board("b1", "Roadmap", "u1", [("u1", "OWNER"), ("u2", "EDITOR")])
    backend.seed_board("b2", "Ops", "u2", [("u2", "OWNER"), ("u1", "VIEWER")])
    backend.seed_task("a", "b1", "Alpha")
    backend.seed_task("b", "b1", "Bravo", deadline="2026-01-05T10:00:00.000Z")
    backend.seed_task("d", "b1", "Delta", status="IN_PROGRESS")
    backend.seed_task("z", "b2", "Zulu", status="DONE")
    return backend


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Session wiring
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_sign_in_loads_boards_and_tasks(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        assert app.dashboard.active_board.id == "b1"
        assert [t.id for t in app.tasks.tasks] == ["a", "b", "d"]
        assert app.dashboard.permission().role == BoardRole.OWNER
        await app.aclose()
    run(scenario())


def test_sign_out_clears_caches(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_task("a")

        app.session.sign_out()
        assert app.boards.boards == []
        assert app.boards.active_board_id is None
        assert app.tasks.tasks == []
        assert app.dashboard.selected_task is None
        assert app.dashboard.open_modal is None
        await app.aclose()
    run(scenario())


def test_user_switch_reloads(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        await sign_in(app, "u2")
        assert len(seeded.calls("GET", "boards")) == 2
        assert app.dashboard.permission().role == BoardRole.EDITOR
        await app.aclose()
    run(scenario())


def test_switching_board_discards_old_tasks_first(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_board("b2")
        # Nothing from b1 may be visible while b2 loads
        assert app.tasks.tasks == []
        assert app.tasks.board_id == "b2"

        await app.dashboard.wait_idle()
        assert [t.id for t in app.tasks.tasks] == ["z"]
        await app.aclose()
    run(scenario())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Permission gate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_editor_moves_across_lanes(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u2")
        assert app.dashboard.permission().can_modify
        await app.dashboard.move_task("a", TaskStatus.IN_PROGRESS, 0)
        assert app.tasks.get("a").status == TaskStatus.IN_PROGRESS
        assert seeded._task("a")["status"] == "IN_PROGRESS"
        await app.aclose()
    run(scenario())


def test_unlisted_user_is_blocked_without_request(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u3")
        denied = []
        app.events.subscribe("error", lambda message, op: denied.append(op))
        before = len(seeded.requests)

        with pytest.raises(AuthorizationError):
            await app.dashboard.move_task("a", TaskStatus.IN_PROGRESS, 0)
        with pytest.raises(AuthorizationError):
            await app.dashboard.create_task("Sneaky")
        with pytest.raises(AuthorizationError):
            await app.dashboard.delete_task("a")

        assert len(seeded.requests) == before
        assert app.tasks.get("a").status == TaskStatus.TODO
        assert denied == ["permission"] * 3
        await app.aclose()
    run(scenario())


def test_viewer_cannot_edit(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_board("b2")
        await app.dashboard.wait_idle()
        assert app.dashboard.permission().role == BoardRole.VIEWER
        with pytest.raises(AuthorizationError):
            await app.dashboard.set_status("z", TaskStatus.TODO)
        with pytest.raises(AuthorizationError):
            await app.dashboard.set_assignees("z", ["u1"])
        assert seeded.calls("PATCH", "tasks/z/status") == []
        await app.aclose()
    run(scenario())


def test_owner_only_actions(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u2")
        for action in (
            app.dashboard.rename_board("Taken"),
            app.dashboard.delete_board(),
            app.dashboard.share_board("u3"),
            app.dashboard.update_member_role("u2", BoardRole.VIEWER),
            app.dashboard.remove_member("u1"),
            app.dashboard.search_users("carol"),
        ):
            with pytest.raises(AuthorizationError):
                await action
        assert seeded.calls("PATCH", "boards/b1") == []
        assert seeded.boards["b1"]["name"] == "Roadmap"
        await app.aclose()
    run(scenario())


def test_owner_manages_board(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        await app.dashboard.rename_board("Roadmap 2027")
        await app.dashboard.share_board("u3", BoardRole.EDITOR)
        members = await app.dashboard.open_members()
        assert app.dashboard.open_modal == "members"
        assert {m.user_id for m in members} == {"u1", "u2", "u3"}
        assert app.dashboard.active_board.name == "Roadmap 2027"
        await app.aclose()
    run(scenario())


def test_granted_role_takes_effect_on_next_action(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u3")
        assert not app.dashboard.permission().can_modify
        seeded.members["b1"].append({"userId": "u3", "role": "EDITOR"})
        await app.boards.fetch_board_members("b1")
        assert app.dashboard.permission().can_modify
        created = await app.dashboard.create_task("Now allowed")
        assert app.tasks.tasks[0].id == created.id
        await app.aclose()
    run(scenario())


def test_create_board_needs_a_user(make_app, seeded):
    async def scenario():
        app = make_app()
        with pytest.raises(AuthorizationError):
            await app.dashboard.create_board("Anon")
        assert seeded.calls("POST", "boards") == []
        await app.aclose()
    run(scenario())


def test_create_board_switches_to_it(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        board = await app.dashboard.create_board("Launch")
        assert app.dashboard.active_board.id == board.id
        assert app.dashboard.permission().is_owner
        assert app.tasks.tasks == []
        await app.aclose()
    run(scenario())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task form
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_save_form_converts_deadline(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_task("a")
        assert app.dashboard.open_modal == "task"

        await app.dashboard.save_task_form("a", "Alpha!", "notes", "2026-03-10", "09:30")
        expected = datetime(2026, 3, 10, 9, 30).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        assert seeded.calls("PATCH", "tasks/a")[-1][2] == {
            "name": "Alpha!", "description": "notes", "deadline": expected,
        }
        assert app.tasks.get("a").deadline == expected
        assert app.dashboard.open_modal is None
        await app.aclose()
    run(scenario())


def test_save_form_clears_existing_deadline(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        await app.dashboard.save_task_form("b", "Bravo", "")
        assert seeded.calls("PATCH", "tasks/b")[-1][2]["deadline"] is None
        assert app.tasks.get("b").deadline is None

        await app.dashboard.save_task_form("a", "Alpha", "")
        assert "deadline" not in seeded.calls("PATCH", "tasks/a")[-1][2]
        await app.aclose()
    run(scenario())


def test_failed_save_keeps_modal_open(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_task("a")
        seeded.fail("PATCH tasks/a", 500)
        with pytest.raises(NetworkError):
            await app.dashboard.save_task_form("a", "Alpha!", "")
        assert app.dashboard.open_modal == "task"
        assert app.dashboard.selected_task.name == "Alpha"
        await app.aclose()
    run(scenario())


def test_delete_selected_task_closes_modal(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        app.dashboard.select_task("d")
        await app.dashboard.delete_task("d")
        assert app.dashboard.open_modal is None
        assert app.dashboard.selected_task_id is None
        await app.aclose()
    run(scenario())


def test_completion_rate(make_app, seeded, sign_in):
    async def scenario():
        app = make_app()
        await sign_in(app, "u1")
        assert app.dashboard.completion_rate() == 0
        await app.dashboard.set_status("a", TaskStatus.DONE)
        assert app.dashboard.completion_rate() == 33
        await app.aclose()
    run(scenario())
