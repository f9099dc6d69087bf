"""
🔧 The Implementer — LiteLLM tool-loop change generator

Operates in a read-write-observe loop against the working checkout.
It can read files, write files, and finally call `done` with the
iteration summary. The loop never commits; that is the executor's job.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from contiloop.agents import ChangeGenerator, GenerationResult
from contiloop.router import GenerationUnavailableError, Router


IMPLEMENTER_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "read_file",
            "description": "Read the contents of a file from the workspace.",
            "parameters": {
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "write_file",
            "description": "Write complete content to a file in the workspace (creates or overwrites).",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "content": {"type": "string"}
                },
                "required": ["path", "content"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "done",
            "description": "Signal that this iteration's changes are complete.",
            "parameters": {
                "type": "object",
                "properties": {
                    "summary": {
                        "type": "string",
                        "description": "Short summary; first line is the commit title. Include the completion token if the whole task is finished."
                    }
                },
                "required": ["summary"]
            }
        }
    }
]


class ImplementerAgent(ChangeGenerator):
    name = "implementer"

    system_prompt = """You are the implementation engine of an autonomous development loop.

You operate in a tool loop:
1. DO NOT guess file contents. Use `read_file` before editing.
2. Write one file at a time using `write_file` with the complete new content.
3. Keep each iteration small and focused; the loop will call you again.
4. When this iteration's change is done, call `done` with a brief summary.
"""

    def __init__(self, router: Router, max_steps: int = 15):
        self.router = router
        self.max_steps = max_steps

    def generate(self, prompt: str, working_dir: Path) -> GenerationResult:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]
        written: list[str] = []
        tokens = 0

        for step in range(self.max_steps):
            logger.debug(f"[IMPLEMENTER] Loop step {step + 1}/{self.max_steps}")
            try:
                response = self.router.complete(messages=messages, tools=IMPLEMENTER_TOOLS)
            except Exception as e:
                raise GenerationUnavailableError(f"Model call failed: {e}") from e
            tokens += response.tokens_used

            assist_msg: dict[str, Any] = {"role": "assistant", "content": response.content or ""}
            if response.tool_calls:
                assist_msg["tool_calls"] = [
                    tc.model_dump() if hasattr(tc, "model_dump") else dict(tc)
                    for tc in response.tool_calls
                ]
            messages.append(assist_msg)

            if not response.tool_calls:
                messages.append({
                    "role": "user",
                    "content": "Please use your tools to take action, or call `done` if you are finished.",
                })
                continue

            for tool_call in response.tool_calls:
                tc_id = tool_call.id
                tc_name = tool_call.function.name

                try:
                    tc_args = json.loads(tool_call.function.arguments or "{}")
                except json.JSONDecodeError:
                    messages.append(_tool_msg(tc_id, tc_name, "Error: Invalid JSON in arguments."))
                    continue

                logger.info(f"[IMPLEMENTER] Tool call: {tc_name}")

                if tc_name == "done":
                    summary = str(tc_args.get("summary") or response.content or "").strip()
                    return GenerationResult(summary=summary, changed_files=written, tokens_used=tokens)

                if tc_name == "read_file":
                    result = _read_file(working_dir, tc_args.get("path", ""))
                elif tc_name == "write_file":
                    path = tc_args.get("path", "")
                    result = _write_file(working_dir, path, tc_args.get("content", ""))
                    if result.startswith("Wrote") and path not in written:
                        written.append(path)
                else:
                    result = f"Error: unknown tool {tc_name}"
                messages.append(_tool_msg(tc_id, tc_name, result))

        logger.warning("[IMPLEMENTER] Loop exhausted without calling `done`.")
        if written:
            return GenerationResult(
                summary=f"Partial implementation: wrote {len(written)} file(s) before hitting the step limit.",
                changed_files=written,
                tokens_used=tokens,
            )
        raise GenerationUnavailableError("Implementer hit max step limit without producing changes.")


def _tool_msg(tc_id: str, name: str, content: str) -> dict[str, str]:
    return {"role": "tool", "tool_call_id": tc_id, "name": name, "content": content}


def _resolve(working_dir: Path, path: str) -> Path:
    root = working_dir.resolve()
    target = (root / path).resolve()
    if not path or not target.is_relative_to(root):
        raise ValueError(f"path escapes workspace: {path!r}")
    return target


def _read_file(working_dir: Path, path: str) -> str:
    try:
        content = _resolve(working_dir, path).read_text(encoding="utf-8")
        return f"Read {len(content)} characters:\n\n{content}"
    except Exception as e:
        return f"Error reading file: {e}"


def _write_file(working_dir: Path, path: str, content: str) -> str:
    try:
        fpath = _resolve(working_dir, path)
        fpath.parent.mkdir(parents=True, exist_ok=True)
        fpath.write_text(content, encoding="utf-8")
        return f"Wrote {len(content)} characters to {path}."
    except Exception as e:
        return f"Error writing file: {e}"
