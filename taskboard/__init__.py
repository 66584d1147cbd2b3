# Task board: lane-partitioned board state, drag transitions, persistence
#
# Components:
#   schema.py   - Data model (Task, Person, Lane, DragEvent, TaskDraft)
#   errors.py   - Error taxonomy raised by gateways
#   avatar.py   - Initials and palette color for assignees
#   board.py    - In-memory BoardStore (lanes, ordering, expansion flags)
#   gateway.py  - PersistenceGateway interface and factory
#   store.py    - SQLite gateway
#   remote.py   - HTTP (PostgREST-style) gateway
#   events.py   - Notification bridge
#   engine.py   - Drag-completion transition engine
#   forms.py    - Create-task dialog controller
#   session.py  - Per-identity board session
#   config.py   - YAML configuration and logging setup
#   server.py   - Flask JSON API

__version__ = "0.3.0"
