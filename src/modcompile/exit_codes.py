"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Build failures of every kind share :data:`EXIT_GENERIC_FAILURE` so that
scripts driving ``modcompile build`` only have to distinguish success from
failure. Usage errors detected by the argument parser keep their own code.

Example::

    $ modcompile build ./ExampleMod
    $ echo $?
    1   # EXIT_GENERIC_FAILURE -- the build failed, see stderr
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""The environment was not ready, a build stage failed, or an unexpected error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_INTERRUPTED = 130
"""The user interrupted the command with Ctrl-C."""
