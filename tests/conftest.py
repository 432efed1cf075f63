"""Shared fixtures: an in-memory backend implementing the REST contract."""

import asyncio
import itertools
import json

import httpx
import pytest

from taskboard.app import TaskboardApp
from taskboard.config import Config
from taskboard.schema import User
from taskboard.session import Session

LANES = ("TODO", "IN_PROGRESS", "DONE")

USERS = {
    "u1": {"id": "u1", "email": "alice@example.com", "username": "alice"},
    "u2": {"id": "u2", "email": "bob@example.com", "username": "bob"},
    "u3": {"id": "u3", "email": "carol@example.com", "username": "carol"},
}


def run(coro):
    """Drive one async scenario to completion."""
    return asyncio.run(coro)


class FakeBackend:
    """
    Serves the taskboard REST API from memory.

    - requests:       every (method, path, body) received, in order
    - fail(key, st):  answer `key` ("PATCH tasks/t1/status") with status `st`,
                      or raise a transport error when st == "network"
    - hold(key):      delay the response to `key` until release(key); the
                      server side has already been applied by then

    Both take `times` to affect only the next N matching requests.
    """

    def __init__(self, user_id: str = "u1"):
        self.user_id = user_id
        self.users = dict(USERS)
        self.boards = {}        # id -> {id, name, ownerId}
        self.members = {}       # board id -> [{userId, role}]
        self.tasks = []         # server order
        self.assignees = {}     # task id -> [userId]
        self.requests = []
        self.failures = {}
        self.holds = {}
        self.inline_members = True
        self.batch_available = True
        self._ids = itertools.count(100)

    # ── Test controls ────────────────────────────────────────────────────

    def fail(self, key, status=500, times=None):
        self.failures[key] = {"status": status, "times": times}

    def hold(self, key, times=None):
        self.holds[key] = {"event": asyncio.Event(), "times": times}

    def release(self, key):
        self.holds.pop(key)["event"].set()

    @staticmethod
    def _consume(rule):
        if rule is None:
            return False
        if rule["times"] is None:
            return True
        if rule["times"] > 0:
            rule["times"] -= 1
            return True
        return False

    def calls(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r[0] == method) and (path is None or r[1] == path)
        ]

    def seed_board(self, board_id, name, owner_id, members=()):
        self.boards[board_id] = {"id": board_id, "name": name, "ownerId": owner_id}
        self.members[board_id] = [{"userId": u, "role": r} for u, r in members]

    def seed_task(self, task_id, board_id, name, status="TODO", assignees=(), **extra):
        task = {"id": task_id, "boardId": board_id, "name": name, "status": status,
                "description": None, "deadline": None, "updatedAt": "2026-01-01T00:00:00.000Z"}
        task.update(extra)
        self.tasks.append(task)
        self.assignees[task_id] = list(assignees)

    def lane(self, board_id, status):
        return [t["id"] for t in self.tasks if t["boardId"] == board_id and t["status"] == status]

    # ── Transport ────────────────────────────────────────────────────────

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path.lstrip("/")
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))

        key = f"{method} {path}"
        status = None
        if self._consume(self.failures.get(key)):
            status = self.failures[key]["status"]
            response = httpx.Response(502 if status == "network" else status,
                                      json={"message": f"forced {status}"})
        else:
            response = self.route(method, path.split("/"), body, request)

        gate = self.holds.get(key)
        if self._consume(gate):
            await gate["event"].wait()
        if status == "network":
            raise httpx.ConnectError("connection refused", request=request)
        return response

    def _task(self, task_id):
        for t in self.tasks:
            if t["id"] == task_id:
                return t
        return None

    def _task_out(self, t):
        return dict(t, assignedTo=list(self.assignees.get(t["id"], [])))

    def route(self, method, parts, body, request):
        ok = httpx.Response(204)
        missing = httpx.Response(404, json={"message": "Not found"})

        if parts[0] == "boards":
            if len(parts) == 1 and method == "GET":
                out = []
                for b in self.boards.values():
                    row = dict(b)
                    if self.inline_members:
                        row["members"] = list(self.members[b["id"]])
                    out.append(row)
                return httpx.Response(200, json=out)
            if len(parts) == 1 and method == "POST":
                board_id = f"b{next(self._ids)}"
                self.seed_board(board_id, body["name"], self.user_id, [(self.user_id, "OWNER")])
                return httpx.Response(201, json=dict(self.boards[board_id], members=self.members[board_id]))

            board_id = parts[1]
            if board_id not in self.boards:
                return missing
            if len(parts) == 2 and method == "PATCH":
                self.boards[board_id]["name"] = body["name"]
                return ok
            if len(parts) == 2 and method == "DELETE":
                del self.boards[board_id]
                self.tasks = [t for t in self.tasks if t["boardId"] != board_id]
                return ok
            if parts[2] == "members" and len(parts) == 3:
                return httpx.Response(200, json=self.members[board_id])
            if parts[2] == "share":
                self.members[board_id].append({"userId": body["userId"], "role": body["role"]})
                return ok
            if parts[2] == "members" and len(parts) == 4:
                rows = self.members[board_id]
                if method == "PATCH":
                    for row in rows:
                        if row["userId"] == parts[3]:
                            row["role"] = body["role"]
                    return ok
                if method == "DELETE":
                    self.members[board_id] = [r for r in rows if r["userId"] != parts[3]]
                    return ok

        if parts[0] == "auth" and parts[1] == "users":
            if parts[2] == "batch":
                if not self.batch_available:
                    return httpx.Response(404, json={"message": "Cannot POST"})
                return httpx.Response(200, json=[self.users[i] for i in body["ids"] if i in self.users])
            if parts[2] == "search":
                q = request.url.params.get("q", "").lower()
                hits = [u for u in self.users.values() if q in u["email"] or q in u["username"]]
                return httpx.Response(200, json=hits)
            user = self.users.get(parts[2])
            return httpx.Response(200, json=user) if user else missing

        if parts[0] == "tasks":
            if len(parts) == 1 and method == "POST":
                task_id = f"t{next(self._ids)}"
                task = {"id": task_id, "boardId": body["boardId"], "name": body["name"],
                        "status": "TODO", "description": None, "deadline": None,
                        "updatedAt": "2026-01-02T00:00:00.000Z"}
                self.tasks.insert(0, task)
                self.assignees[task_id] = []
                return httpx.Response(201, json=task)
            if parts[1] == "board":
                board_id = parts[2]
                if len(parts) == 3:
                    return httpx.Response(200, json=[t for t in self.tasks if t["boardId"] == board_id])
                if parts[3] == "reorder":
                    self._reorder(board_id, body["status"], body["orderedTaskIds"])
                    return ok

            task = self._task(parts[1])
            if task is None:
                return missing
            if len(parts) == 2 and method == "PATCH":
                for field in ("name", "description", "deadline"):
                    if field in body:
                        task[field] = body[field]
                if "assignedTo" in body:
                    self.assignees[task["id"]] = list(body["assignedTo"])
                task["updatedAt"] = "2026-01-03T00:00:00.000Z"
                return httpx.Response(200, json=self._task_out(task))
            if len(parts) == 2 and method == "DELETE":
                self.tasks.remove(task)
                return ok
            if parts[2] == "status":
                task["status"] = body["status"]
                return ok
            if parts[2] == "assignees":
                if method == "GET":
                    return httpx.Response(200, json=[{"userId": u} for u in self.assignees[task["id"]]])
                self.assignees[task["id"]] = list(body["userIds"])
                return ok

        return httpx.Response(404, json={"message": f"No route for {method} {'/'.join(parts)}"})

    def _reorder(self, board_id, status, ordered_ids):
        others = [t for t in self.tasks if t["boardId"] != board_id]
        mine = {t["id"]: t for t in self.tasks if t["boardId"] == board_id}
        rebuilt = []
        for lane in LANES:
            ids = ordered_ids if lane == status else self.lane(board_id, lane)
            rebuilt.extend(mine[i] for i in ids if i in mine and mine[i]["status"] == lane)
        rebuilt.extend(t for t in mine.values() if t not in rebuilt)
        self.tasks = rebuilt + others


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_app(tmp_path, backend):
    """Factory: a TaskboardApp wired to the fake backend, not yet signed in."""
    def _make(state_db=None):
        config = Config(
            api_base_url="http://api.test",
            request_timeout=5,
            state_db=state_db or str(tmp_path / "state.db"),
        )
        return TaskboardApp(config, session=Session(), transport=httpx.MockTransport(backend.handle))
    return _make


@pytest.fixture
def sign_in():
    """Sign a user into an app and wait for the initial board/task load."""
    async def _sign_in(app, user_id="u1"):
        app.session.sign_in(User.from_dict(USERS[user_id]), token=f"token-{user_id}")
        await app.dashboard.wait_idle()
    return _sign_in
