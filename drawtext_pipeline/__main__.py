"""Package entry point for ``python -m drawtext_pipeline``.

WHY: Operators run both steps through one module name:
``python -m drawtext_pipeline generate transcript.json in.mp4 out.mp4``
writes the command document, ``python -m drawtext_pipeline [--progress]``
executes it.

HOW: If the first argument is ``generate``, the remaining arguments go to
the generate CLI. Otherwise everything goes to the execute CLI.
"""

import sys

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "generate":
        from drawtext_pipeline.generate import main as generate_main
        generate_main(sys.argv[2:])
    else:
        from drawtext_pipeline.cli import main
        main()
