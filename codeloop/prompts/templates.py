"""Prompt templates for chat mode and worker mode.

Placeholders use ``{{ name }}`` and are filled by :func:`replace_placeholders`.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def replace_placeholders(template: str, values: Mapping[str, Any]) -> str:
    """Substitute every ``{{ name }}`` in *template*.

    Raises:
        KeyError: If the template names a placeholder missing from *values*.
    """

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            raise KeyError(f"Missing value for placeholder {key!r}")
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, template)


# ---------------------------------------------------------------------------
# Shared sections
# ---------------------------------------------------------------------------

_CODE_RULES = """\
## How to respond

You respond ONLY with Python code.  The code runs inside an async function:

- Start your response with ■fn_start and end it with ■fn_end.
- Top-level `await` is allowed; call async tools with `await`.
- Run independent async calls concurrently with `await gather(a(...), b(...))`.
- `import` statements are not available, and names starting with `_` (other than a bare `_`) are forbidden.
- Use `print(...)` to leave notes; they are recorded but not shown to the user.
- Variables you assign are kept for the next turn if you decide to think.

Every response MUST end by returning an action:

```python
return {"action": "<exit name>", "value": ...}
```

To look at intermediate results before deciding, return `{"action": "think"}`
(optionally with extra keys to inspect) or `raise ThinkSignal("why", {"name": value})`.
You will then get a message from the VM with the values and can continue.\
"""

_TOOLS_SECTION = """\
## Available objects and tools

```python
{{ tools }}
```

Tools you can call: {{ tool_names }}
Read-only properties: {{ readonly_vars }}
Writable properties: {{ writeable_vars }}{{ variables_example }}\
"""

_EXITS_SECTION = """\
## Exits

These are the only valid actions to return:

{{ exits }}\
"""

# ---------------------------------------------------------------------------
# Chat mode
# ---------------------------------------------------------------------------

CHAT_SYSTEM_PROMPT = (
    """\
# Role

You are an assistant taking part in a conversation.  You talk to the user by
calling the `message` tool, and you act by writing Python code that calls the
tools available to you.

# Instructions

{{ identity }}

"""
    + _CODE_RULES
    + "\n\n"
    + _TOOLS_SECTION
    + "\n\n"
    + _EXITS_SECTION
    + """

## Conversation transcript

{{ transcript }}
"""
)

CHAT_USER_PROMPT = """\
{{ recap }}

Respond with the code for your next turn (■fn_start).
"""

# ---------------------------------------------------------------------------
# Worker mode
# ---------------------------------------------------------------------------

WORKER_SYSTEM_PROMPT = (
    """\
# Role

You are an autonomous worker.  You complete the task described below by
writing Python code that calls the tools available to you.  Nobody reads your
output directly: only the value you return with an exit matters.

# Task

{{ identity }}

"""
    + _CODE_RULES
    + "\n\n"
    + _TOOLS_SECTION
    + "\n\n"
    + _EXITS_SECTION
    + """

## Transcript

{{ transcript }}
"""
)

WORKER_USER_PROMPT = """\
{{ recap }}

Complete the task.  Respond with code only (■fn_start).
"""
