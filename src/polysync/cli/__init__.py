"""polysync CLI - manage entities and audit relationships in the graph store.

Uses tyro for type-driven CLI generation from dataclasses.
"""

from __future__ import annotations

from typing import Annotated

import tyro

from polysync.cli.commands.audit import Heal, Repair, Scan
from polysync.cli.commands.entities import (
    CapabilitiesCreate,
    DecksCreate,
    ListEntities,
    ValuesCreate,
)
from polysync.cli.commands.ingest import Import
from polysync.cli.commands.stats import Stats

# Type aliases for subcommand annotations
_ValuesCreate = Annotated[ValuesCreate, tyro.conf.subcommand("values:create")]
_CapabilitiesCreate = Annotated[
    CapabilitiesCreate, tyro.conf.subcommand("capabilities:create")
]
_DecksCreate = Annotated[DecksCreate, tyro.conf.subcommand("decks:create")]
_List = Annotated[ListEntities, tyro.conf.subcommand("list")]
_Import = Annotated[Import, tyro.conf.subcommand("import")]
_Scan = Annotated[Scan, tyro.conf.subcommand("scan")]
_Repair = Annotated[Repair, tyro.conf.subcommand("repair")]
_Heal = Annotated[Heal, tyro.conf.subcommand("heal")]
_Stats = Annotated[Stats, tyro.conf.subcommand("stats")]

Command = (
    _ValuesCreate
    | _CapabilitiesCreate
    | _DecksCreate
    | _List
    | _Import
    | _Scan
    | _Repair
    | _Heal
    | _Stats
)


def main() -> int:
    """Entry point for the CLI."""
    # configure structlog (respects POLYSYNC_DEBUG env var)
    from polysync.logging_config import configure_logging

    configure_logging()

    try:
        cmd = tyro.cli(
            Command,
            prog="polysync",
            description="Reconcile entities and relationships in a graph store.",
        )
        return cmd.run()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        from polysync import console

        console.error(str(e))
        return 1
