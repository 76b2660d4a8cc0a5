"""Local stand-in CLI agent for exercising ``CliAgentExecutor`` end to end.

Usage as a command template::

    python -m agent_orchestrator.orchestrator.backend.echo_agent --model {model} --prompt-file {prompt_file}
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back as a markdown answer and report token usage on stderr."""

    parser = argparse.ArgumentParser(prog="echo_agent")
    parser.add_argument("--model", default="echo")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt")
    source.add_argument("--prompt-file")
    parser.add_argument("--sleep", type=float, default=0.0, help="Seconds to wait before answering.")
    parser.add_argument("--fail-with", default=None, help="Print this to stderr and exit non-zero.")
    parser.add_argument("--exit-code", type=int, default=1)
    parser.add_argument("--silent", action="store_true", help="Exit 0 without printing anything.")
    args = parser.parse_args(argv)

    if args.sleep > 0:
        time.sleep(args.sleep)
    if args.fail_with is not None:
        sys.stderr.write(f"{args.fail_with}\n")
        return args.exit_code
    if args.silent:
        return 0

    prompt = (
        Path(args.prompt_file).read_text("utf-8") if args.prompt_file is not None else args.prompt
    )
    task_id = os.getenv("AGENT_ORCHESTRATOR_TASK_ID", "task")
    answer = f"# Echo agent ({args.model})\n\nTask: {task_id}\n\n{prompt.strip()}\n"
    sys.stdout.write(answer)
    prompt_tokens = max(1, len(prompt) // 4)
    completion_tokens = max(1, len(answer) // 4)
    sys.stderr.write(
        f"input_tokens: {prompt_tokens}\n"
        f"output_tokens: {completion_tokens}\n"
        f"total_tokens: {prompt_tokens + completion_tokens}\n",
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
