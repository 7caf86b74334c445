"""Local demo agent for CLI backend integration tests.

Reads a batch prompt, then writes each listed draft into the output directory
with a heading and a short body. ``--max-files`` simulates truncated output.
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path

from issue_forge.generation.scheduler import FILES_SECTION_HEADER, OUTPUT_DIR_PREFIX

_FILE_LINE = re.compile(r"^- (?P<name>\S+\.md)(?: \((?P<note>.*)\))?$")


def parse_prompt(prompt: str) -> tuple[Path | None, list[tuple[str, str]]]:
    """Return (output dir, [(file name, note)]) from a batch prompt."""

    output_dir: Path | None = None
    files: list[tuple[str, str]] = []
    in_files = False
    for line in prompt.splitlines():
        if line.startswith(OUTPUT_DIR_PREFIX):
            output_dir = Path(line[len(OUTPUT_DIR_PREFIX) :].strip())
            continue
        if line.strip() == FILES_SECTION_HEADER:
            in_files = True
            continue
        if not in_files:
            continue
        match = _FILE_LINE.match(line.strip())
        if match is None:
            in_files = False
            continue
        files.append((match.group("name"), match.group("note") or ""))
    return output_dir, files


def main(argv: list[str] | None = None) -> int:
    """Run local deterministic draft generation."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--max-files", type=int, default=0)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    output_dir, files = parse_prompt(prompt)
    if output_dir is None:
        print("prompt has no output directory", file=sys.stderr)
        return 2
    if args.max_files > 0:
        files = files[: args.max_files]

    output_dir.mkdir(parents=True, exist_ok=True)
    for name, note in files:
        title = note.split(":", 1)[-1].strip() or name
        (output_dir / name).write_text(f"# {title}\n\nGenerated by echo agent.\n", "utf-8")
        print(f"wrote {name}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
