"""
deployctl - trigger and follow deployments from the terminal.

Connection settings come from --server-url/--api-key, the DEPLOY_SERVER_URL
and DEPLOY_API_KEY environment variables, or ~/.deploy/config.
"""

import asyncio
import json
import logging
import sys

import click

from deploy_common.models import LogEntry, Project, is_terminal
from deploy_tracker.tracker import DeploymentTracker

from .errors import ApplicationError, DeployAPIError


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def get_tracker(ctx: click.Context) -> DeploymentTracker:
    return DeploymentTracker.from_env(
        server_url=ctx.obj.get("server_url"), api_key=ctx.obj.get("api_key")
    )


def fail(error: Exception) -> None:
    """Print an API error (with an auth hint when relevant) and exit 1."""
    click.echo(f"Error: {error}", err=True)
    if isinstance(error, ApplicationError) and error.status_code in (401, 403):
        click.echo(
            "\nAuthentication required. Please provide an API key using one of:",
            err=True,
        )
        click.echo("  1. Command line flag: --api-key <key>", err=True)
        click.echo("  2. Environment variable: DEPLOY_API_KEY=<key>", err=True)
        click.echo("  3. Config file: ~/.deploy/config (format: api_key=<key>)", err=True)
    sys.exit(1)


def format_log_line(entry: LogEntry) -> str:
    stamp = entry.timestamp.strftime("%H:%M:%S") if entry.timestamp else "--:--:--"
    return f"[{stamp}] {(entry.level or 'INFO').upper()}: {entry.message}"


def format_status(status: str | None) -> str:
    if status == "success":
        return "✓ success"
    if status == "failure":
        return "✗ failure"
    return status or "not deployed"


def print_project(project: Project) -> None:
    click.echo(f"ID:            {project.id}")
    click.echo(f"Name:          {project.name}")
    click.echo(f"Git URL:       {project.git_url}")
    click.echo(f"Build command: {project.build_command}")
    click.echo(f"Environment:   {project.environment}")
    click.echo(f"Domain:        {project.domain or '-'}")
    if not project.deployments:
        click.echo("Deployments:   none")
        return
    click.echo("Deployments:")
    for job in project.deployments:
        created = job.created_at.strftime("%Y-%m-%d %H:%M:%S") if job.created_at else "N/A"
        click.echo(f"  {job.id:<38} {format_status(job.status):<14} {created}")


async def follow(
    tracker: DeploymentTracker, deployment_id: str, project_id: str | None
) -> str | None:
    """Stream a deployment's logs until it finishes; return its final status."""
    resets_seen = 0

    def on_log_update(new_entries, _entries):
        nonlocal resets_seen
        # After a server-side log reset the full set is delivered again
        if handle.log_resets != resets_seen:
            resets_seen = handle.log_resets
            click.echo("--- Log restarted on the server, replaying from the start ---", err=True)
        for entry in new_entries:
            click.echo(format_log_line(entry))

    def on_status_change(status):
        click.echo(f"Status: {format_status(status)}", err=True)

    def on_error(error):
        click.echo(f"Warning: {error}", err=True)

    handle = tracker.attach(
        deployment_id,
        project_id=project_id,
        on_log_update=on_log_update,
        on_status_change=on_status_change,
        on_error=on_error,
    )
    try:
        return await handle.wait()
    finally:
        handle.detach()
        await tracker.aclose()


def watch_and_exit(
    tracker: DeploymentTracker, deployment_id: str, project_id: str | None
) -> None:
    click.echo(
        f"You can reconnect from another terminal with: deployctl watch {deployment_id}",
        err=True,
    )
    try:
        status = run_async(follow(tracker, deployment_id, project_id))
    except DeployAPIError as e:
        fail(e)
    except KeyboardInterrupt:
        click.echo(f"\n\nStopped watching deployment {deployment_id}.", err=True)
        click.echo(
            "The deployment continues on the server. Use 'deployctl watch' to reconnect.",
            err=True,
        )
        sys.exit(130)

    if is_terminal(status):
        click.echo(f"Deployment {deployment_id} finished: {format_status(status)}")
    sys.exit(0 if status == "success" else 1)


@click.group()
@click.option("--server-url", default=None, help="Deploy API URL (or DEPLOY_SERVER_URL)")
@click.option("--api-key", default=None, help="Auth token (or DEPLOY_API_KEY / ~/.deploy/config)")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Logging level (default: WARNING)",
)
@click.pass_context
def cli(ctx, server_url, api_key, log_level):
    """deployctl - Trigger and monitor remote deployments."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["server_url"] = server_url
    ctx.obj["api_key"] = api_key


@cli.command("projects")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def projects_list(ctx, json_output: bool):
    """List all projects."""
    tracker = get_tracker(ctx)
    try:
        projects = run_async(tracker.fetch_projects())
    except DeployAPIError as e:
        fail(e)

    if json_output:
        click.echo(json.dumps([p.to_dict() for p in projects], indent=2))
        return
    if not projects:
        click.echo("No projects found.")
        return

    click.echo(f"{'PROJECT ID':<38} {'NAME':<24} {'STATUS':<14} {'DOMAIN'}")
    click.echo("-" * 100)
    for project in projects:
        latest = project.latest_deployment
        status = format_status(latest.status if latest else None)
        click.echo(
            f"{project.id:<38} {project.name[:24]:<24} {status:<14} {project.domain or '-'}"
        )


@cli.command("show")
@click.argument("project_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def project_show(ctx, project_id: str, json_output: bool):
    """Show a project and its deployments."""
    tracker = get_tracker(ctx)
    try:
        project = run_async(tracker.get_project(project_id))
    except DeployAPIError as e:
        fail(e)

    if json_output:
        click.echo(json.dumps(project.to_dict(), indent=2))
    else:
        print_project(project)


@cli.command("create")
@click.option("--name", required=True, help="Project name")
@click.option("--git-url", required=True, help="Repository URL")
@click.option("--build-command", default="npm run build", show_default=True)
@click.option("--environment", default="node:18", show_default=True)
@click.option("--domain", default=None, help="Custom domain")
@click.option("--no-watch", is_flag=True, help="Return right after the deployment starts")
@click.pass_context
def project_create(ctx, name, git_url, build_command, environment, domain, no_watch):
    """Create a project and deploy it."""
    tracker = get_tracker(ctx)
    try:
        project_id, deployment_id = run_async(
            tracker.create_project(
                name,
                git_url,
                build_command=build_command,
                environment=environment,
                domain=domain,
            )
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except DeployAPIError as e:
        fail(e)

    click.echo("✓ Project created successfully")
    click.echo(f"  Project ID:    {project_id}")
    click.echo(f"  Deployment ID: {deployment_id}")
    if not no_watch:
        watch_and_exit(tracker, deployment_id, project_id)


@cli.command("rebuild")
@click.argument("project_id")
@click.option("--no-watch", is_flag=True, help="Return right after the deployment starts")
@click.pass_context
def project_rebuild(ctx, project_id: str, no_watch: bool):
    """Redeploy the latest deployment of a project."""
    tracker = get_tracker(ctx)
    try:
        deployment_id = run_async(tracker.rebuild_project(project_id))
    except LookupError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except DeployAPIError as e:
        fail(e)

    click.echo(f"Deployment started: {deployment_id}")
    if not no_watch:
        watch_and_exit(tracker, deployment_id, project_id)


@cli.command("delete")
@click.argument("project_id")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def project_delete(ctx, project_id: str, yes: bool):
    """Delete a project."""
    if not yes:
        click.confirm(f"Delete project {project_id}?", abort=True)
    tracker = get_tracker(ctx)
    try:
        run_async(tracker.delete_project(project_id))
    except DeployAPIError as e:
        fail(e)
    click.echo(f"✓ Project {project_id} deleted")


@cli.command("watch")
@click.argument("deployment_id")
@click.option("--project", "project_id", default=None, help="Owning project (enables status checks)")
@click.pass_context
def deployment_watch(ctx, deployment_id: str, project_id: str | None):
    """Stream a deployment's logs until it finishes."""
    tracker = get_tracker(ctx)
    watch_and_exit(tracker, deployment_id, project_id)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
