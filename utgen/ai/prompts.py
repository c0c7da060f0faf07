"""Prompt builders for test generation conversations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import ConversationContext


SYSTEM_PROMPT = (
    "You are a helpful assistant that generates and revises unit tests for "
    "JavaScript/TypeScript code."
)


def build_initial_prompt(context: "ConversationContext") -> str:
    fence = context.fence_label
    imports = context.import_context or "(none)"
    types = context.referenced_types or "(none)"
    return f"""Write comprehensive unit tests for the following function, which is defined in the file '{context.file_location}'.
Use the import statement `import {{ {context.unit_name} }} from '{context.import_path}';` to import the function.
Do not use any external libraries other than {context.test_framework}.
The imports in this file that you may need to know about are:
{imports}
The types used are:
{types}
Include the tests inside a single ```{fence}``` code block, and avoid additional explanations.

{context.unit_code}"""


def build_feedback_prompt(context: "ConversationContext", feedback: str) -> str:
    return (
        f"The following tests failed:\n\n{feedback}\n\n"
        "Revise the tests to address the issues. Include the updated tests in a "
        f"single ```{context.fence_label}``` code block."
    )
