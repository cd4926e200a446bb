"""Built-in node handlers: template substitution, output formatting, input and asset collection."""

import inspect
import json
import re
from typing import Any, Callable, Dict, Optional

from ..models.core import OutputFormat
from .handler_registry import ExecutionContext
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_PROMPT = "Generate content based on the following inputs:"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PLACEHOLDER = "{{"


def _stringify(value: Any) -> str:
    return str(value) if value else ""


def substitute_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Replace every `{{name}}` in `template` with the string form of `variables[name]`.

    Matching is literal and case-sensitive; each name is replaced globally.
    Placeholders without a matching variable are left untouched.
    """
    rendered = template
    for name, value in variables.items():
        rendered = rendered.replace("{{" + name + "}}", _stringify(value))
    return rendered


def format_output(inputs: Dict[str, Any], output_format=OutputFormat.TEXT) -> str:
    """Combine upstream results for an output node."""
    values = list(inputs.values())

    if output_format == OutputFormat.JSON:
        return json.dumps(inputs, indent=2, default=str)
    if output_format == OutputFormat.LIST:
        return "\n".join(f"{index}. {value}" for index, value in enumerate(values, start=1))
    return "\n\n".join(str(value) for value in values)


class UserInputHandler:
    """Returns the value entered on a user input node after type checks."""

    def __call__(self, context: ExecutionContext) -> str:
        node = context.node
        config = node.config
        value = "" if node.result is None else str(node.result)

        if config.required and not value.strip():
            raise ValueError("Required input is missing")

        if config.input_type == "email" and value and not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")

        if config.input_type == "number" and value:
            try:
                float(value)
            except ValueError:
                raise ValueError("Input must be a valid number")

        return value


class GenerateHandler:
    """Renders a generate node's prompt and hands it to the configured generator.

    Without a generator the rendered prompt itself is the node's result. A
    generator is any callable `(prompt, config)` returning text or an
    awaitable of text.
    """

    def __init__(self, generator: Optional[Callable[..., Any]] = None):
        self.generator = generator

    def build_prompt(self, context: ExecutionContext) -> str:
        template = context.node.config.prompt_template or DEFAULT_PROMPT
        prompt = substitute_template(template, context.variables)

        # Templates that reference no variables get the inputs appended verbatim
        if context.inputs and PLACEHOLDER not in template:
            input_context = "\n".join(f"{key}: {value}" for key, value in context.inputs.items())
            prompt += f"\n\nInputs:\n{input_context}"

        return prompt

    async def __call__(self, context: ExecutionContext) -> Any:
        prompt = self.build_prompt(context)
        if self.generator is None:
            return prompt

        config = context.node.config
        full_prompt = f"{config.role_description}\n\n{prompt}" if config.role_description else prompt
        logger.debug(f"Calling generator for node {context.node_id} (model={config.model or 'default'})")

        result = self.generator(full_prompt, config)
        if inspect.isawaitable(result):
            result = await result
        return result


class OutputHandler:
    """Formats upstream results according to the node's configured format."""

    def __call__(self, context: ExecutionContext) -> str:
        if not context.inputs:
            raise ValueError("No inputs available for output")
        return format_output(context.inputs, context.node.config.format)


class AddAssetsHandler:
    """Summarises the text and files attached to an asset node."""

    preview_length = 100

    def __call__(self, context: ExecutionContext) -> str:
        node = context.node
        data = node.result if isinstance(node.result, dict) else {}
        assets = []

        text_input = data.get("textInput") or data.get("text_input") or ""
        if isinstance(text_input, str) and text_input.strip():
            assets.append(f"Text Input: {text_input}")
        elif node.config.text_input.strip():
            assets.append(f"Text Input: {node.config.text_input}")

        files = data.get("files")
        if isinstance(files, list):
            for file in files:
                size_kb = round(file.get("size", 0) / 1024)
                content = str(file.get("content", ""))
                assets.append(
                    f"File: {file.get('name', 'unnamed')} ({size_kb}KB) - {content[:self.preview_length]}..."
                )

        if not assets:
            raise ValueError("No assets provided. Please add text input or upload files.")

        return f"Successfully processed {len(assets)} asset(s):\n\n" + "\n\n".join(assets)
