# pipeshell_pipeline.py
# Example pipeline: copy /etc/hosts into two files through tee.
#   pipeshell run --pipeline pipeshell_pipeline.py --cwd /tmp
from __future__ import annotations

from pipeshell import dsl


def pipeline(shell):
    chain = dsl.pipe(
        shell.command("cat", "/etc/hosts"),
        shell.command("tee", "out1"),
    )
    # tee's own stdout is appended, so re-running grows out2
    return dsl.redirect_append(chain, "out2")
