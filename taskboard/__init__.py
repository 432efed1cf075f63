# Taskboard client sync engine: local mirror of server-owned boards and tasks
#
# Components:
#   schema.py      - Data model (Board, BoardMember, Task, TaskStatus, BoardRole)
#   permissions.py - Role and capability resolution per user per board
#   mutations.py   - Optimistic mutation lifecycle and stale-response gating
#   api.py         - REST client (httpx) and error mapping
#   store.py       - SQLite persistence for local UI state (active board)
#   events.py      - Notification bridge for UI subscribers
#   session.py     - Current user and bearer credential
#   boards.py      - BoardCache: boards, membership, active board
#   tasks.py       - TaskCache: tasks of the active board
#   reorder.py     - Drag-and-drop reordering
#   dashboard.py   - Orchestrator: wiring, permission gate, view state
#   app.py         - Application root and logging setup

__version__ = "0.3.0"
