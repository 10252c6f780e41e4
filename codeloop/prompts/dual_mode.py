"""Dual-mode prompt builder.

Chat mode (a global tool named ``message`` exists) and worker mode share
every builder; only the template text differs.  All builders are pure and
return ``{"role", "content"[, "name"]}`` dicts.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from ..core.context import Catalogue
from ..core.status import (
    ExecutionErrorStatus,
    ExitError,
    InvalidCodeErrorStatus,
    ThinkingRequested,
)
from ..core.transcript import render_transcript
from ..core.truncator import wrap_content
from ..sandbox.code_extraction import FN_END, FN_START
from .inspect import inspect_value
from .snapshot import SnapshotResult
from .templates import (
    CHAT_SYSTEM_PROMPT,
    CHAT_USER_PROMPT,
    WORKER_SYSTEM_PROMPT,
    WORKER_USER_PROMPT,
    replace_placeholders,
)
from .typings import exit_typings, object_typings, tool_typings

STOP_TOKENS = (FN_END,)

VM_HEADER = "## Important message from the VM"
DEFAULT_IDENTITY = "No specific instructions provided"

_GLOBAL_TOOLS_SEPARATOR = """

# ----------------------- #
#       Global Tools      #
# ----------------------- #

"""

_EXPECTED_OUTPUT = f"""\
Expected output:

```python
{FN_START}
# code here
{FN_END}
```"""


def stop_tokens() -> list[str]:
    return list(STOP_TOKENS)


def _vm_message(content: str) -> dict[str, str]:
    return {"role": "user", "name": "VM", "content": content.strip()}


# ---------------------------------------------------------------------------
# System and initial messages
# ---------------------------------------------------------------------------


def system_message(catalogue: Catalogue) -> dict[str, str]:
    declarations = ""
    tool_names: list[str] = []
    readonly_vars: list[str] = []
    writeable_vars: list[str] = []

    for obj in catalogue.objects:
        declarations += object_typings(obj) + "\n\n\n"
        tool_names.extend(f"{obj.name}.{t.name}" for t in obj.tools)
        for prop in obj.properties:
            target = writeable_vars if prop.writable else readonly_vars
            target.append(f"{obj.name}.{prop.name}")

    if catalogue.objects and catalogue.tools:
        declarations += _GLOBAL_TOOLS_SEPARATOR

    for tool in catalogue.tools:
        declarations += tool_typings(tool) + "\n"
        tool_names.append(tool.name)

    example = ""
    if writeable_vars:
        example += (
            "# Example of writing to a property:\n"
            f"{writeable_vars[0]} = ...  # assigning to a writable property is valid\n"
        )
    if readonly_vars:
        example += (
            "# Example of reading a property:\n"
            f"value = {readonly_vars[0]}  # reading a read-only property is valid\n"
            "# writing to a read-only property is not allowed and raises an error\n"
        )
    if example:
        example = f"\n\n```python\n{example.rstrip()}\n```"

    template = CHAT_SYSTEM_PROMPT if catalogue.mode == "chat" else WORKER_SYSTEM_PROMPT
    content = replace_placeholders(
        template,
        {
            "identity": catalogue.instructions or DEFAULT_IDENTITY,
            "tools": declarations.strip() or "# No tools available",
            "tool_names": ", ".join(tool_names) or "none",
            "readonly_vars": ", ".join(readonly_vars) or "none",
            "writeable_vars": ", ".join(writeable_vars) or "none",
            "variables_example": example,
            "exits": _render_exits(catalogue),
            "transcript": render_transcript(list(catalogue.transcript)),
        },
    )
    return {"role": "system", "content": content.strip()}


def _render_exits(catalogue: Catalogue) -> str:
    lines = []
    for ex in catalogue.exits:
        line = f"- `{ex.name}`: {ex.description or 'No description'}"
        if ex.aliases:
            line += f" (aliases: {', '.join(ex.aliases)})"
        typings = exit_typings(ex)
        if typings:
            line += f"\n  `value` must be: `{typings}`"
        lines.append(line)
    lines.append('- `think`: Pause and inspect values before continuing')
    return "\n".join(lines)


def initial_user_message(catalogue: Catalogue) -> dict[str, str]:
    chat = catalogue.mode == "chat"
    recap = "Nobody has spoken yet in this conversation."
    if chat:
        recap += " You can start by saying something."

    if catalogue.transcript:
        last = catalogue.transcript[-1]
        if last.role == "user":
            recap = f"The user spoke last. Here's what they said:\n■im_start\n{last.content.strip()}\n■im_end"
        elif last.role == "assistant":
            recap = (
                "You are the one who spoke last. Here's what you said last:\n"
                f"■im_start\n{last.content.strip()}\n■im_end"
            )

    template = CHAT_USER_PROMPT if chat else WORKER_USER_PROMPT
    return {"role": "user", "content": replace_placeholders(template, {"recap": recap}).strip()}


# ---------------------------------------------------------------------------
# Follow-up messages
# ---------------------------------------------------------------------------


def invalid_code_message(code: str, message: str) -> dict[str, str]:
    return _vm_message(
        f"""
{VM_HEADER}

The code you provided is invalid. Here's the error:

Code:

```python
{FN_START}
{wrap_content(code)}
{FN_END}
```

Error:
```
{wrap_content(message, flex=4)}
```

Please fix the error and try again.

{_EXPECTED_OUTPUT}
"""
    )


def code_execution_error_message(message: str, stacktrace: str) -> dict[str, str]:
    return _vm_message(
        f"""
{VM_HEADER}

An error occurred while executing the code.

{wrap_content(message, preserve="start", flex=4)}

Stack Trace:
```
{wrap_content(stacktrace, preserve="start", flex=6)}
```

Let the user know that an error occurred, and if possible, try something else. Do not repeat yourself in the message.

{_EXPECTED_OUTPUT}
"""
    )


def _render_variables(variables: Any) -> str:
    if isinstance(variables, Mapping):
        parts = []
        for key, value in variables.items():
            parts.append(inspect_value(value, str(key)) or f"Value of {key} is {_json(value)}")
        return "\n\n".join(parts)
    if isinstance(variables, (list, tuple)):
        parts = []
        for index, value in enumerate(variables):
            parts.append(
                inspect_value(value, f"Index {index}") or f"Value at index {index} is {_json(value)}"
            )
        return "\n\n".join(parts)
    if isinstance(variables, str):
        return variables
    return inspect_value(variables) or _json(variables)


def _json(value: Any) -> str:
    return wrap_content(json.dumps(value, indent=2, default=repr))


def thinking_message(variables: Any, reason: Optional[str] = None) -> dict[str, str]:
    context = _render_variables(variables)
    return _vm_message(
        f"""
{VM_HEADER}

The assistant requested to think. Here's the context:
-------------------
Reason: {reason or "Thinking requested"}
Context:
{wrap_content(context, preserve="start")}
-------------------

Please continue with the conversation ({FN_START}).
"""
    )


def _executed_code(stack: str) -> str:
    # The last line is the one that was interrupted
    return "\n".join(stack.split("\n")[:-1])


def snapshot_resolved_message(
    result: SnapshotResult, injected_variables: dict[str, Any]
) -> dict[str, str]:
    """Resume message for a completed asynchronous operation.

    Restored variables are written into *injected_variables*.
    """
    snapshot = result.snapshot
    declarations = ""
    for variable in snapshot.variables:
        if not variable.truncated:
            injected_variables[variable.name] = variable.value
            preview = (inspect_value(variable.value) or "").replace("\n", "\n# ")
            declarations += (
                f'\n# Variable "{variable.name}" restored with its full value:\n'
                f"# {wrap_content(preview)}\n"
                f"{variable.name}: {variable.type}\n"
            )
        else:
            preview = variable.preview.replace("\n", "\n# ")
            declarations += (
                f'\n# The variable "{variable.name}" was too large to be restored with its full value, '
                "here's a preview of its last known value:\n"
                f"# {wrap_content(preview)}\n"
                "# Important: To restore the full value, please re-run the code that generated "
                "this variable in the first place.\n"
                f"{variable.name}: {variable.type} | None = None\n"
            )

    output = wrap_content(
        (inspect_value(result.result) or "").replace("\n", "\n# "), preserve="start", flex=4
    )
    names = '", "'.join(injected_variables)

    return _vm_message(
        f"""
{VM_HEADER}

The execution of an asynchronous code block has been completed. Here's the code that was executed:
{_executed_code(snapshot.stack)}
# {result.callback.description}
```python
# Here's the output:
# {output}
```

Continue the conversation from here, without repeating the above code, as it has already been executed. Here's the variables you can rely on:

```python
{wrap_content(declarations)}
```

You can now assume that the code you are about to generate can rely on the variables "{names}" being available.
There are NO OTHER VARIABLES than the ones listed above.

IMPORTANT: Do NOT re-run the code that was already executed. This would be a critical error. Instead, continue the conversation from here.

{_EXPECTED_OUTPUT}
"""
    )


def snapshot_rejected_message(result: SnapshotResult) -> dict[str, str]:
    snapshot = result.snapshot
    error = inspect_value(result.result) or "Unknown Error"
    output = wrap_content(error.replace("\n", "\n# "), preserve="both", min_tokens=100)

    return _vm_message(
        f"""
{VM_HEADER}

An error occurred while executing the code. Here is the code that was executed so far:

{_executed_code(snapshot.stack)}

{result.callback.description}
Here's the error:
{output}

Continue the conversation from here, without repeating the above code, as it has already been executed.
IMPORTANT: Do NOT re-run the code that was already executed. This would be a critical error. Instead, continue the conversation from here.

{_EXPECTED_OUTPUT}
"""
    )


def follow_up_message(status: Any, code: Optional[str] = None) -> Optional[dict[str, str]]:
    """The corrective message for a retryable status, or ``None``."""
    if isinstance(status, InvalidCodeErrorStatus):
        return invalid_code_message(code or "", status.message)
    if isinstance(status, ExecutionErrorStatus):
        return code_execution_error_message(status.message, status.stack)
    if isinstance(status, ExitError):
        return code_execution_error_message(status.message, "No stack trace available")
    if isinstance(status, ThinkingRequested):
        return thinking_message(status.variables, status.reason)
    return None
