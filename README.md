# budva

Building blocks for a service that forwards chat messages between channels
and groups according to a set of rules: a task queue, a loader for the
forwarding rules, a persistent state store and terminal prompts for
interactive sign-in.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Components

### `budva.queue.TaskQueue`

An in-process, thread-safe FIFO queue of callables. After `start()` a
background thread runs the task at the head of the queue once per
`interval` seconds (1.0 by default), one task at a time. An exception raised
by a task is logged and does not stop the queue. `close()` stops the thread;
tasks still queued stay in the queue.

```python
from budva.queue import TaskQueue

queue = TaskQueue(interval=1.0)
queue.start()
queue.add(lambda: print("hello"))
...
queue.close()
```

The queue can also be drained by hand, which suits tests:

- `process_one()` runs the head task and returns `False` if the queue was empty;
- `process_all()` runs every task, including tasks added while it runs;
- `process_batch()` runs only the tasks that were queued when it was called.

`len(queue)` gives the number of queued tasks.

### `budva.ruleset`

`RulesetLoader` reads a YAML file of forwarding rules and watches it for
changes.

```python
from budva.ruleset import RulesetLoader

loader = RulesetLoader("ruleset.yml")
rules = loader.load()
loader.watch(lambda: print("ruleset changed"))
...
loader.close()
```

`load()` returns a `RuleSet` with these members:

- `sources`: chat id → `Source` (with optional `translate`, `sign`, `link`,
  `prev` and `next` options, each a `SourceOption` with `title`, `lang` and
  `for_chats`);
- `destinations`: chat id → `Destination` (with `replace_myself_links` and a
  list of `ReplaceFragment` items holding `from_text` and `to_text`);
- `forward_rules`: rule id → `ForwardRule` (`from_chat`, `to`, `send_copy`,
  `copy_once`, `indelible`, `exclude`, `check`, `other`);
- `unique_sources`, `unique_destinations` and `ordered_forward_rules`.

Chat identifiers are written as positive numbers in the file; `load()`
negates them, including those in the `for` lists of source options, because
groups and channels have negative identifiers. A rule whose source chat is
not listed under `sources` gets a plain `Source` added for it.

Validation rules:

- a rule identifier may not contain `,` or `:`;
- `from` and every entry of `to` must be positive, and no `to` entry may
  equal `from`;
- each replacement fragment must keep its UTF-16 length (see `utf16_len`).

A file that cannot be read or parsed, or that breaks a rule above, raises
`RulesetError`. A file that yields no rules, sources or destinations raises
`EmptyConfigError`, a subclass of `RulesetError` whose `ruleset` attribute
holds what was loaded.

`watch(on_change)` calls `on_change` each time the file is written or
created, and raises `RulesetError` if the file does not exist. `close()`
stops watching and does nothing if no watch is running.

A minimal ruleset:

```yaml
sources:
  1001000:
    sign:
      title: "Source"
      for: [2001000]
destinations:
  2001000:
    replaceFragments:
      - from: "hello"
        to: "world"
forwardRules:
  rule1:
    from: 1001000
    to: [2001000]
    sendCopy: true
```

### `budva.state.StateStore`

A persistent key-value store for forwarding state, kept as an SQLite file
(`state.db`) in the given directory. `start()` opens it, creating the
directory if needed (a path that is a file raises `NotADirectoryError`),
and starts a background thread that compacts the database every five
minutes. `close()` stops that thread and closes the database; it is safe to
call more than once. Used as a context manager, the store is started on
entry and closed on exit.

```python
from budva.state import StateStore

with StateStore(".data/state") as store:
    store.set("key", "value")
    store.get("key")                       # "value"
    store.increment("counter")             # 1
    store.set_copied_message_id(-100, 1, "rule1:-200:500")
    store.get_copied_message_ids(-100, 1)  # ["rule1:-200:500"]
```

Basic operations: `get()` (raises `KeyNotFoundError` for a missing key),
`set()`, `delete()`, `get_set(key, fn)` which replaces the value with
`fn(current)` in one transaction (a missing key is passed as `""`, and
nothing is written if `fn` raises), `increment()` for an unsigned 64-bit
counter, and `ping()`. Using the store before `start()` raises
`RuntimeError`.

Forwarding helpers built on top of these:

- `set_copied_message_id`, `get_copied_message_ids`,
  `delete_copied_message_ids`: copies of a message, each recorded as
  `"forwardRuleID:dstChatID:tmpMessageID"`; a new copy for the same rule and
  destination replaces the old entry;
- `set_new_message_id`, `get_new_message_id`, `delete_new_message_id` and
  `set_tmp_message_id`, `get_tmp_message_id`, `delete_tmp_message_id`:
  temporary ↔ permanent message ids; the getters return 0 when nothing is
  stored;
- `set_answer_message_id`, `get_answer_message_id`,
  `delete_answer_message_id`: reply links stored as
  `"srcChatID:srcMessageID"`; the getter returns `""` when nothing is stored;
- `increment_viewed_messages` and `increment_forwarded_messages`: counters
  per destination chat and date.

### `budva.term.Terminal`

Line input, hidden password input and output for interactive sign-in.

```python
import sys
from budva.term import Terminal

terminal = Terminal(sys.stdin, sys.stdout, sys.stdin.fileno())
terminal.printf("Enter code: ")
code = terminal.read_line()
```

- `read_line()` returns the next line with surrounding whitespace removed and
  raises `EOFError` at the end of input;
- `read_password()` reads a line from the descriptor with echo turned off and
  raises `OSError` when the descriptor is not a terminal;
- `println(*args)` writes the arguments separated by spaces and a newline;
- `printf(fmt, *args)` writes a `%`-formatted string.

## What this package does not do

It holds no chat client and no message-forwarding logic, and it installs no
command. It supplies the queue, rules, state and prompts that such a service
is built from; connecting to a chat network and acting on the rules is left
to the application that uses it.