# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""ipkg CLI - Command Line Interface for the ipkg package manager"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

# Force UTF-8 encoding for Windows
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from ipkg import __version__
from ipkg.core.exceptions import IpkgError
from ipkg.core.lifecycle import LifecycleEngine
from ipkg.core.logger import get_logger, setup_logging
from ipkg.core.manifest import dependency_listing
from ipkg.core.registry import PackageRoot
from ipkg.core.roots import RootManager
from ipkg.core.sorting import SORT_METHODS

logger = get_logger("cli")


def fail(e: Exception):
    """Report an error on stderr and exit with code 1."""
    click.echo(f"[-] Error: {e}", err=True)
    if isinstance(e, IpkgError):
        logger.debug(json.dumps(e.to_dict(), default=str))
    sys.exit(1)


def open_root(ctx: click.Context) -> PackageRoot:
    return RootManager().resolve(ctx.obj.get("root"))


def open_engine(ctx: click.Context) -> LifecycleEngine:
    return LifecycleEngine(open_root(ctx))


@click.group()
@click.version_option(version=__version__)
@click.option("--root", "-r", "root_path", type=click.Path(), help="Package root to operate on")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Console log level",
)
@click.pass_context
def cli(ctx, root_path: Optional[str], log_level: Optional[str]):
    """ipkg - package manager for the IRA platform.

    Installs packages into a package root, tracks what depends on what,
    and switches between installed versions.

    Core commands:
        ipkg root PATH              - select (and create) a package root
        ipkg install PATH           - install a bundle directory or .ipkg file
        ipkg remove NAME VERSION    - uninstall, with unused dependencies
        ipkg list                   - show installed packages
    """
    ctx.ensure_object(dict)
    ctx.obj["root"] = root_path
    if log_level:
        setup_logging(level=log_level)


# =============================================================================
# Root Selection
# =============================================================================

@cli.command("root")
@click.argument("path", type=click.Path(), required=False)
def root_cmd(path: Optional[str]):
    """Select the package root, creating it if needed.

    Without PATH, show the current root.

    Examples:
        ipkg root ~/ira           # Use ~/ira from now on
        ipkg root                 # Show the current root
    """
    manager = RootManager()
    try:
        if path is None:
            current = manager.get_current_path()
            if current is None:
                click.echo(f"No root selected, default is {manager.default_root}")
            else:
                click.echo(str(current))
            return

        root = manager.set_current(path)
        click.echo(f"[+] Current root: {root.path}")
    except IpkgError as e:
        fail(e)


# =============================================================================
# Lifecycle Commands
# =============================================================================

@cli.command()
@click.argument("path", type=click.Path())
@click.option("--dependency", "-d", "as_dependency", is_flag=True,
              help="Install as a dependency of another package")
@click.pass_context
def install(ctx, path: str, as_dependency: bool):
    """Install a package from a bundle directory or .ipkg file.

    Examples:
        ipkg install ./testpkg
        ipkg install testpkg.ipkg --dependency
    """
    try:
        record = open_engine(ctx).install(path, as_dependency=as_dependency)
        click.echo(f"[+] Installed {record.identity.key}")
    except IpkgError as e:
        fail(e)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.option("--keep-deps", is_flag=True, help="Do not remove unused dependencies")
@click.option("--force", "-f", is_flag=True, help="Remove even if other packages require it")
@click.pass_context
def remove(ctx, name: str, version: str, keep_deps: bool, force: bool):
    """Uninstall a package version.

    Dependencies that were installed only for this package and are no
    longer required by anything are removed too, unless --keep-deps.
    """
    try:
        open_engine(ctx).remove(name, version, cascade=not keep_deps, force=force)
        click.echo(f"[+] Removed {name}-${version}")
    except IpkgError as e:
        fail(e)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.pass_context
def activate(ctx, name: str, version: str):
    """Make NAME VERSION the active version (recreate its links)."""
    try:
        report = open_engine(ctx).activate(name, version)
        if report is None:
            click.echo(f"{name}-${version} is already active")
            return
        click.echo(f"[+] Activated {name}-${version} ({len(report.applied)} link(s))")
        for entry, reason in report.failed:
            click.echo(f"    [!] {entry.link_path}: {reason}", err=True)
        for error in report.errors:
            click.echo(f"    [!] {error}", err=True)
    except IpkgError as e:
        fail(e)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.pass_context
def deactivate(ctx, name: str, version: str):
    """Remove the links of NAME VERSION, keeping its files."""
    try:
        report = open_engine(ctx).deactivate(name, version)
        if report is None:
            click.echo(f"{name}-${version} is already inactive")
            return
        click.echo(f"[+] Deactivated {name}-${version} ({len(report.applied)} link(s))")
        for entry, reason in report.failed:
            click.echo(f"    [!] {entry.link_path}: {reason}", err=True)
        for error in report.errors:
            click.echo(f"    [!] {error}", err=True)
    except IpkgError as e:
        fail(e)


@cli.command()
@click.argument("name")
@click.argument("version")
@click.option("--user", is_flag=True, help="Mark as installed by the user")
@click.option("--dependency", is_flag=True, help="Mark as installed as a dependency")
@click.pass_context
def mark(ctx, name: str, version: str, user: bool, dependency: bool):
    """Change whether a package counts as user-installed.

    Dependency-only packages are removed automatically once nothing
    requires them; user-installed ones never are.
    """
    if user == dependency:
        click.echo("[-] Error: pass exactly one of --user or --dependency", err=True)
        sys.exit(1)
    flag = user
    try:
        open_engine(ctx).set_installed_by_user(name, version, flag)
        click.echo(f"[+] {name}-${version} marked as {'user' if flag else 'dependency'}")
    except IpkgError as e:
        fail(e)


# =============================================================================
# Inspection Commands
# =============================================================================

@cli.command("list")
@click.option("--user", "user_only", is_flag=True, help="Only packages installed by the user")
@click.option("--deps", "deps_only", is_flag=True, help="Only packages installed as dependencies")
@click.option("--sort", "sort_by", type=click.Choice(sorted(SORT_METHODS)), default="name",
              help="Sort order")
@click.option("--reverse", is_flag=True, help="Reverse the order")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx, user_only: bool, deps_only: bool, sort_by: str, reverse: bool, as_json: bool):
    """List installed packages.

    Examples:
        ipkg list
        ipkg list --deps
        ipkg list --sort version --reverse
    """
    if user_only and deps_only:
        click.echo("[-] Error: --user and --deps are mutually exclusive", err=True)
        sys.exit(1)
    installed_by_user = True if user_only else (False if deps_only else None)
    try:
        engine = open_engine(ctx)
        records = engine.root.list(installed_by_user=installed_by_user)
        SORT_METHODS[sort_by].sort(records, reverse=reverse)
        active = {r.identity: engine.is_active(r.name, r.version) for r in records}
    except IpkgError as e:
        fail(e)
        return

    if as_json:
        click.echo(json.dumps(
            [dict(r.to_dict(), active=active[r.identity]) for r in records], indent=2
        ))
        return

    if not records:
        click.echo("No packages installed.")
        return

    click.echo(f"{'PACKAGE':<30} {'VERSION':<15} {'BY':<6} {'USED BY':<8} {'ACTIVE':<6}")
    for record in records:
        by = "user" if record.installed_by_user else "dep"
        state = "yes" if active[record.identity] else "no"
        click.echo(
            f"{record.name:<30} {record.version:<15} {by:<6} {record.used_by:<8} {state:<6}"
        )


@cli.command()
@click.argument("name")
@click.argument("version")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def info(ctx, name: str, version: str, as_json: bool):
    """Show details of an installed package."""
    try:
        engine = open_engine(ctx)
        record = engine.root.find(name, version)
        data = record.to_dict()
        data["active"] = engine.is_active(name, version)
        data["path"] = str(engine.install_dir(name, version))
        data["dependencies"] = dependency_listing(record.dependency_map)
    except IpkgError as e:
        fail(e)
        return

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"Package:   {record.identity.key}")
    click.echo(f"Path:      {data['path']}")
    click.echo(f"Installed: {'by user' if record.installed_by_user else 'as dependency'}")
    click.echo(f"Used by:   {record.used_by}")
    click.echo(f"Active:    {'yes' if data['active'] else 'no'}")
    for kind in ("required", "optional"):
        deps = data["dependencies"][kind]
        click.echo(f"{kind.capitalize() + ':':<10} {', '.join(deps) if deps else '-'}")


@cli.command()
@click.option("--reclaim", is_flag=True, help="Delete orphaned installation folders")
@click.pass_context
def orphans(ctx, reclaim: bool):
    """Show installation folders left behind by failed installs."""
    try:
        root = open_root(ctx)
        if reclaim:
            removed = root.reclaim_orphans()
            for path in removed:
                click.echo(f"[+] Removed {path.name}")
            if not removed:
                click.echo("No orphaned installations.")
            return

        found = root.orphaned_dirs()
    except IpkgError as e:
        fail(e)
        return

    if not found:
        click.echo("No orphaned installations.")
        return
    for path in found:
        click.echo(str(Path(path)))


if __name__ == "__main__":
    cli()
