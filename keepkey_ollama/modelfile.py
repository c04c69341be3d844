"""
Modelfile rewriting: replace local file references with blob digests.

A Modelfile may point FROM/ADAPTER at files on the client machine:

    FROM ./llama3-8b.gguf
    PARAMETER temperature 0.2
    ADAPTER ~/adapters/sql.bin

The server cannot read those paths, so each one that exists locally is
uploaded as a blob and the directive rewritten to "FROM @sha256:...".
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)

FILE_DIRECTIVES = ("FROM", "ADAPTER")

CreateBlob = Callable[[Path], Awaitable[str]]


def resolve_path(arg: str, base_dir: Union[str, Path]) -> Path:
    """
    Resolve a directive argument to a local path.

    "~..." is taken relative to the home directory, anything else relative
    to `base_dir` (absolute paths stay as they are).
    """
    if arg.startswith("~"):
        return Path.home() / arg[1:].lstrip("/\\")
    return (Path(base_dir) / arg).resolve()


async def rewrite_modelfile(
    modelfile: str,
    base_dir: Union[str, Path],
    create_blob: CreateBlob,
) -> str:
    """
    Return `modelfile` with local FROM/ADAPTER files swapped for blob references.

    Directives whose argument is not an existing local file, and every other
    line, are kept exactly as written.
    """
    out = []
    for line in modelfile.split("\n"):
        command, sep, args = line.partition(" ")
        if sep and command.upper() in FILE_DIRECTIVES and args.strip():
            path = resolve_path(args.strip(), base_dir)
            if path.is_file():
                digest = await create_blob(path)
                logger.debug("%s %s -> @%s", command, args.strip(), digest)
                out.append(f"{command} @{digest}")
                continue
        out.append(line)
    return "\n".join(out)
