# Copyright 2025 KTTC AI (https://github.com/kttc-ai)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Translation memory CLI commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer

from l10ntm.core.exceptions import TMError
from l10ntm.core.models import (
    BootstrapOptions,
    SyncDownOptions,
    SyncUpOptions,
    TMStats,
    TmStoreInfo,
)
from l10ntm.memory.manager import TMManager
from l10ntm.utils.config import get_settings
from l10ntm.utils.console import (
    console,
    print_error,
    print_info,
    print_success,
    print_table,
    print_warning,
)

T = TypeVar("T")

# Help text constants
STORE_ID_HELP = "TM store id"
COMMIT_HELP = "Execute the plan (default is a dry run)"
LANG_HELP = "Restrict to a language pair (e.g., en,fr)"
PARALLELISM_HELP = "Language pairs processed concurrently"

tm_app = typer.Typer(
    name="tm",
    help="Synchronize the local translation memory with TM stores",
    no_args_is_help=True,
)


def _configure_logging(verbose: bool) -> None:
    settings = get_settings()
    default_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    log_level = logging.DEBUG if verbose else default_level
    logging.basicConfig(level=log_level, format="%(message)s", force=True)


def _parse_lang(lang: str | None) -> tuple[str | None, str | None]:
    """Parse 'src,tgt' (either side may be empty)."""
    if not lang:
        return None, None
    parts = lang.split(",")
    if len(parts) != 2:
        print_error("Invalid language pair format. Use 'en,fr'")
        raise typer.Exit(code=1)
    return parts[0].strip() or None, parts[1].strip() or None


def _run(action: Callable[[TMManager], Awaitable[T]], verbose: bool) -> T:
    """Run an async action against a manager built from settings."""
    _configure_logging(verbose)
    manager = TMManager.from_settings(get_settings())
    try:
        return asyncio.run(action(manager))
    except KeyboardInterrupt:
        print_warning("Interrupted by user")
        raise typer.Exit(code=130)
    except TMError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    except Exception as e:
        print_error(f"Error: {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)
    finally:
        manager.close()


@tm_app.command("list")
def list_tm(
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
) -> None:
    """List configured TM stores and local language pairs.

    Example:
        l10ntm tm list
    """
    stores, stats = _run(_collect_listing, verbose)
    if stores:
        print_table(
            "TM Stores",
            ["Id", "Type", "Access", "Partitioning"],
            [(s.id, s.type, s.access.value, s.partitioning.value) for s in stores],
        )
    else:
        print_warning("No TM stores configured (set L10NTM_TM_STORES)")
    if stats:
        print_table(
            "Local TM",
            ["Pair", "Jobs", "TUs", "Guids"],
            [
                (f"{s.source_lang}→{s.target_lang}", s.job_count, s.tu_count, s.distinct_guids)
                for s in stats
            ],
        )
    else:
        print_info("Local TM is empty")


async def _collect_listing(manager: TMManager) -> tuple[list[TmStoreInfo], list[TMStats]]:
    stores = [manager.get_tm_store_info(store_id) for store_id in manager.tm_store_ids]
    return stores, await manager.get_stats()


@tm_app.command("syncdown")
def syncdown(
    store: str = typer.Argument(..., help=STORE_ID_HELP),
    commit: bool = typer.Option(False, "--commit", help=COMMIT_HELP),
    delete: bool = typer.Option(
        False, "--delete", help="Delete local jobs of the store that are gone remotely"
    ),
    erase_parent: bool = typer.Option(
        False, "--erase-parent", help="Do not tag imported jobs with the store id"
    ),
    store_alias: str | None = typer.Option(
        None, "--store-alias", help="Id used to tag local ownership instead of the store id"
    ),
    lang: str | None = typer.Option(None, "--lang", "-l", help=LANG_HELP),
    parallelism: int | None = typer.Option(None, "--parallelism", "-p", help=PARALLELISM_HELP),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
) -> None:
    """Pull changed blocks from a TM store into the local TM.

    Example:
        l10ntm tm syncdown shared --lang en,fr --commit
    """
    source_lang, target_lang = _parse_lang(lang)
    options = SyncDownOptions(
        dryrun=not commit,
        source_lang=source_lang,
        target_lang=target_lang,
        delete_extra_jobs=delete,
        erase_parent_tm_store=erase_parent,
        store_alias=store_alias,
        parallelism=parallelism,
    )
    plans = _run(lambda manager: manager.sync_down(store, options), verbose)
    print_table(
        f"Sync-down from {store}" + ("" if commit else " (dry run)"),
        ["Pair", "Blocks to store", "Jobs to delete"],
        [
            (f"{p.source_lang}→{p.target_lang}", len(p.blocks_to_store), len(p.jobs_to_delete))
            for p in plans
        ],
    )
    if commit:
        print_success(f"Synced down {len(plans)} language pairs")
    else:
        print_info("Dry run, use --commit to apply")


@tm_app.command("syncup")
def syncup(
    store: str = typer.Argument(..., help=STORE_ID_HELP),
    commit: bool = typer.Option(False, "--commit", help=COMMIT_HELP),
    delete: bool = typer.Option(
        False, "--delete", help="Rewrite remote blocks that end up empty or foreign"
    ),
    exclude_unassigned: bool = typer.Option(
        False, "--exclude-unassigned", help="Do not push jobs without a TM store"
    ),
    no_assign: bool = typer.Option(
        False, "--no-assign", help="Do not tag pushed jobs with the store id"
    ),
    store_alias: str | None = typer.Option(
        None, "--store-alias", help="Id used to tag local ownership instead of the store id"
    ),
    lang: str | None = typer.Option(None, "--lang", "-l", help=LANG_HELP),
    parallelism: int | None = typer.Option(None, "--parallelism", "-p", help=PARALLELISM_HELP),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
) -> None:
    """Push local jobs to a TM store.

    Example:
        l10ntm tm syncup shared --commit
    """
    source_lang, target_lang = _parse_lang(lang)
    options = SyncUpOptions(
        dryrun=not commit,
        source_lang=source_lang,
        target_lang=target_lang,
        delete_empty_blocks=delete,
        include_unassigned=not exclude_unassigned,
        assign_unassigned=not no_assign,
        store_alias=store_alias,
        parallelism=parallelism,
    )
    plans = _run(lambda manager: manager.sync_up(store, options), verbose)
    print_table(
        f"Sync-up to {store}" + ("" if commit else " (dry run)"),
        ["Pair", "Blocks to update", "Jobs to update"],
        [
            (f"{p.source_lang}→{p.target_lang}", len(p.blocks_to_update), len(p.jobs_to_update))
            for p in plans
        ],
    )
    if commit:
        print_success(f"Synced up {len(plans)} language pairs")
    else:
        print_info("Dry run, use --commit to apply")


@tm_app.command("bootstrap")
def bootstrap(
    store: str = typer.Argument(..., help=STORE_ID_HELP),
    commit: bool = typer.Option(False, "--commit", help=COMMIT_HELP),
    lang: str | None = typer.Option(None, "--lang", "-l", help=LANG_HELP),
    parallelism: int | None = typer.Option(None, "--parallelism", "-p", help=PARALLELISM_HELP),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
) -> None:
    """Replace local language pairs with the full content of a TM store.

    Example:
        l10ntm tm bootstrap shared --commit
    """
    source_lang, target_lang = _parse_lang(lang)
    options = BootstrapOptions(
        dryrun=not commit,
        source_lang=source_lang,
        target_lang=target_lang,
        parallelism=parallelism,
    )
    result = _run(lambda manager: manager.bootstrap(store, options), verbose)
    if result.dryrun:
        print_table(
            f"Bootstrap from {store} (dry run)",
            ["Pair"],
            [(f"{src}→{tgt}",) for src, tgt in result.pairs],
        )
        print_info("Dry run, use --commit to replace the local TM")
        return
    print_table(
        f"Bootstrap from {store}",
        ["Pair", "Jobs", "TUs"],
        [(f"{s.source_lang}→{s.target_lang}", s.job_count, s.tu_count) for s in result.stats],
    )
    print_success(f"Bootstrapped {len(result.stats)} language pairs")


__all__ = ["tm_app"]
