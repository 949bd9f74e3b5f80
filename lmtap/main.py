"""
lmtap — CLI entrypoint.

Usage:
    lmtap --help
    lmtap list
    lmtap install lm
    lmtap install lm --version 0.1.1 --bin-dir ~/bin
    lmtap audit --fetch
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from lmtap import __version__
from lmtap.core.config.settings import Settings
from lmtap.core.errors import TapError
from lmtap.core.observability.logging_config import level_from_flags, setup_logging


def _settings(ctx: click.Context, **overrides: object) -> Settings:
    """Settings for this invocation, with command-level overrides applied."""
    try:
        return Settings.resolve(
            tap_dir=ctx.obj.get("tap_dir"),
            state_dir=ctx.obj.get("state_dir"),
            **overrides,
        )
    except ValueError as e:
        click.secho(f"❌ Invalid settings: {e}", fg="red")
        sys.exit(1)


def _host(platform: str | None):
    if platform is None:
        return None
    from lmtap.core.services.host import parse_platform

    try:
        return parse_platform(platform)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--platform") from e


def _fail(err: TapError, as_json: bool) -> None:
    """Report a pipeline error and exit non-zero."""
    if as_json:
        click.echo(json.dumps({"ok": False, **err.to_dict()}, indent=2))
    else:
        click.secho(f"❌ {err}", fg="red")
        output = getattr(err, "output", "")
        if output:
            click.echo("   Output:")
            for line in output.strip().splitlines()[-10:]:
                click.echo(f"     {line}")
        if err.retryable:
            click.echo("   This looks transient; try again with --retries.")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="lmtap")
@click.option("--verbose", "-v", is_flag=True, help="Show pipeline progress.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--tap",
    "tap_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Formula directory (default: $LMTAP_TAP_DIR or the bundled tap).",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where receipts and the audit ledger live (default: $LMTAP_STATE_DIR).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    tap_dir: Path | None,
    state_dir: Path | None,
) -> None:
    """lmtap — install and verify the Lunch Money CLI."""
    ctx.ensure_object(dict)
    ctx.obj["tap_dir"] = tap_dir
    ctx.obj["state_dir"] = state_dir

    setup_logging(
        level=level_from_flags(
            debug=debug,
            verbose=verbose,
            quiet=quiet,
            env_level=os.environ.get("LMTAP_LOG_LEVEL"),
        ),
        log_file=os.environ.get("LMTAP_LOG_FILE"),
        log_file_level=os.environ.get("LMTAP_LOG_FILE_LEVEL"),
    )


# ── Browse ──────────────────────────────────────────────────────


@cli.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_formulae(ctx: click.Context, as_json: bool) -> None:
    """List formulae and their releases."""
    from lmtap.core.config.loader import load_tap

    settings = _settings(ctx)
    try:
        tap = load_tap(settings.tap_dir)
    except TapError as e:
        _fail(e, as_json)
        return

    if as_json:
        data = [
            {
                "name": f.name,
                "binary": f.binary,
                "aliases": list(f.aliases),
                "latest": f.latest().version if f.latest() else None,
                "releases": [
                    {"version": r.version, "published": r.published, "platforms": r.platforms}
                    for r in f.releases
                ],
            }
            for f in (tap.formulae[n] for n in tap.names)
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not tap.formulae:
        click.secho(f"⚠️  No formulae in {tap.path}", fg="yellow")
        return

    click.secho(f"\n📦 Tap: {tap.path}", fg="cyan", bold=True)
    for name in tap.names:
        formula = tap.formulae[name]
        alias_label = f" (aka {', '.join(formula.aliases)})" if formula.aliases else ""
        click.secho(f"   {formula.name}", fg="white", bold=True, nl=False)
        click.echo(f"{alias_label}  → {formula.binary}")
        for release in formula.releases:
            marker = "" if release.published else "  [placeholder]"
            click.echo(f"     • {release.version}  {', '.join(release.platforms)}{marker}")
    click.echo()


@cli.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="Exact version (default: newest published).")
@click.option("--platform", default=None, help="Override host platform, e.g. macos/arm64.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def info(ctx: click.Context, name: str, version: str | None, platform: str | None, as_json: bool) -> None:
    """Show a release and the download selected for this machine."""
    from lmtap.core.config.loader import load_tap
    from lmtap.core.services.resolver import resolve

    settings = _settings(ctx)
    host = _host(platform)
    try:
        resolution = resolve(load_tap(settings.tap_dir), name, version, host)
    except TapError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps(resolution.to_dict(), indent=2))
        return

    d = resolution.descriptor
    click.secho(f"\n📋 {d.name} {d.version}", fg="cyan", bold=True)
    if d.description:
        click.echo(f"   {d.description}")
    if d.homepage_url:
        click.echo(f"   🔗 {d.homepage_url}")
    click.echo(f"   Binary:   {d.binary_name}")
    click.echo(f"   Platform: {resolution.host}")
    click.echo(f"   URL:      {resolution.variant.url}")
    click.echo(f"   SHA256:   {resolution.variant.expected_digest}")
    if not d.published:
        click.secho("   ⚠️  Placeholder digest: this release cannot be installed", fg="yellow")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def installed(ctx: click.Context, as_json: bool) -> None:
    """List installed binaries (from receipts)."""
    from lmtap.core.persistence.receipts import list_receipts

    settings = _settings(ctx)
    receipts = list_receipts(settings.receipts_dir)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in receipts], indent=2))
        return

    if not receipts:
        click.echo("Nothing installed.")
        return

    for r in receipts:
        present = "✅" if Path(r.binary_path).is_file() else "❌"
        click.echo(f"   {present} {r.name} {r.version}  → {r.binary_path}  ({r.installed_at})")


# ── Install lifecycle ──────────────────────────────────────────


@cli.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="Exact version (default: newest published).")
@click.option("--bin-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Target directory (default: $LMTAP_BIN_DIR or ~/.local/bin).")
@click.option("--platform", default=None, help="Override host platform, e.g. macos/arm64.")
@click.option("--retries", type=click.IntRange(min=0), default=0, show_default=True,
              help="Retry transient download failures this many times.")
@click.option("--skip-test", is_flag=True, help="Don't run the post-install smoke test.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    name: str,
    version: str | None,
    bin_dir: Path | None,
    platform: str | None,
    retries: int,
    skip_test: bool,
    as_json: bool,
) -> None:
    """Download, verify, install and smoke-test a formula."""
    from lmtap.core.use_cases.install import run_install

    settings = _settings(ctx, bin_dir=bin_dir)
    host = _host(platform)
    try:
        result = run_install(
            name,
            version,
            settings=settings,
            host=host,
            retries=retries,
            skip_test=skip_test,
        )
    except TapError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    a = result.artifact
    click.secho(f"✅ Installed {a.name} {a.version}", fg="green", bold=True)
    click.echo(f"   Binary:  {a.binary_path}")
    click.echo(f"   SHA256:  {a.sha256}")
    if result.smoke_test:
        click.echo(f"   Test:    {' '.join(result.smoke_test.command)} ✓")
    else:
        click.secho("   Test:    skipped", fg="yellow")


@cli.command("test")
@click.argument("name")
@click.option("--bin-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where to look when there is no receipt.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def test_cmd(ctx: click.Context, name: str, bin_dir: Path | None, as_json: bool) -> None:
    """Re-run the smoke test against an installed binary."""
    from lmtap.core.use_cases.install import run_check

    settings = _settings(ctx, bin_dir=bin_dir)
    try:
        receipt, result = run_check(name, settings=settings)
    except TapError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps({"ok": True, "version": receipt.version if receipt else None,
                               **result.to_dict()}, indent=2))
        return

    label = f"{receipt.name} {receipt.version}" if receipt else name
    click.secho(f"✅ {label} passed: {' '.join(result.command)}", fg="green")


@cli.command()
@click.argument("name")
@click.option("--bin-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where to look when there is no receipt.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(ctx: click.Context, name: str, bin_dir: Path | None, as_json: bool) -> None:
    """Remove an installed binary and its receipt."""
    from lmtap.core.use_cases.install import run_uninstall

    settings = _settings(ctx, bin_dir=bin_dir)
    try:
        result = run_uninstall(name, settings=settings)
    except TapError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.removed:
        click.secho(f"🗑️  Removed {result.binary_path}", fg="green")
    else:
        click.secho(f"⚠️  {result.name} is not installed ({result.binary_path})", fg="yellow")


# ── Release ledger ─────────────────────────────────────────────


@cli.command()
@click.option("--fetch", "fetch_artifacts", is_flag=True,
              help="Download every published artifact and check its sha256.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def audit(ctx: click.Context, fetch_artifacts: bool, as_json: bool) -> None:
    """Check the tap's release records for integrity problems."""
    from lmtap.core.config.loader import load_tap
    from lmtap.core.use_cases.audit_tap import audit_tap

    settings = _settings(ctx)
    try:
        tap = load_tap(settings.tap_dir)
    except TapError as e:
        _fail(e, as_json)
        return

    report = audit_tap(tap, fetch_artifacts=fetch_artifacts, timeout=settings.fetch_timeout)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(0 if report.ok else 1)

    click.secho(
        f"\n🔍 Audit: {report.formulae} formulae, {report.releases} releases",
        fg="cyan", bold=True,
    )
    if fetch_artifacts:
        click.echo(f"   Artifacts fetched: {report.variants_fetched}")

    icons = {"error": "❌", "warning": "⚠️ ", "info": "ℹ️ "}
    colors = {"error": "red", "warning": "yellow", "info": "white"}
    for f in report.findings:
        where = f.package + (f" {f.version}" if f.version else "") + (f" [{f.platform}]" if f.platform else "")
        click.secho(f"   {icons[f.severity]} {where}: {f.message}", fg=colors[f.severity])

    click.echo()
    if not report.ok:
        click.secho(f"❌ {len(report.errors)} error(s)", fg="red", bold=True)
        sys.exit(1)
    click.secho("✅ No integrity errors", fg="green", bold=True)


@cli.command()
@click.option("-n", "count", type=click.IntRange(min=1), default=20, show_default=True,
              help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent install/uninstall attempts from the audit ledger."""
    from lmtap.core.persistence.audit import AuditWriter

    settings = _settings(ctx)
    entries = AuditWriter(settings.audit_path).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No history yet.")
        return

    for e in entries:
        color = "green" if e.status == "ok" else "red"
        label = f"{e.package} {e.version}".strip()
        click.echo(f"   {e.timestamp}  {e.operation:<9} {label:<22} ", nl=False)
        click.secho(e.status, fg=color, nl=False)
        click.echo(f" ({e.stage}: {e.error})" if e.error else "")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
