"""Install Claude Code and its router on local or remote hosts."""

__version__ = "0.3.0"
