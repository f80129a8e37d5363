"""Main entry point for running llmbridge from the command line."""

import asyncio
import sys

import llmbridge.entrypoint
from llmbridge.core.error_handling import (
    install_global_exception_hooks,
    register_asyncio_exception_handler,
)


def main() -> None:
    """Run the command line entry point."""
    install_global_exception_hooks()
    with asyncio.Runner() as runner:
        register_asyncio_exception_handler(runner.get_loop())
        try:
            exit_code = runner.run(llmbridge.entrypoint.main())
        except KeyboardInterrupt:
            exit_code = llmbridge.entrypoint.EXIT_CANCELLED
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
