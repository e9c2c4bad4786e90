"""Returns version information"""


import sys
from importlib import metadata

import yaml

from omachine.provider import registry

DISTRIBUTION = "ollama-machine"


def version() -> dict:
    """Returns a dictionary with several version information."""
    try:
        current = metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        current = "Unknown"
    return {
        "ollama-machine": {
            "version": current,
        },
        "providers": registry.names(),
        "connectivity": ["private", "public", "tailscale"],
    }


def print_version() -> None:
    class IndentTables(yaml.SafeDumper):
        def increase_indent(self, flow=False, indentless=False):
            return super().increase_indent(flow, False)

    print("ollama-machine: Ollama on cloud machines\n")
    yaml.dump(version(), sys.stdout, indent=2, Dumper=IndentTables, sort_keys=False)
