"""Main CLI entrypoint for clusternator."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from ..config import load_config
from ..errors import ClusternatorError
from ..orchestrator import Orchestrator
from ..tags import EnvironmentKey


@click.group()
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='YAML config file')
@click.pass_context
def main(ctx, output_json, verbose, config_path):
    """Clusternator - ephemeral environments for pull requests and deployments."""
    ctx.ensure_object(dict)
    ctx.obj['json'] = output_json
    ctx.obj['config_path'] = Path(config_path) if config_path else None

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )


def _json_output(data: Dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=None, default=str))


def _human_output(message: str) -> None:
    """Output human-readable message."""
    if not click.get_current_context().obj.get('json', False):
        click.echo(message)


def _environment_key(project: str, pr: Optional[str], deployment: Optional[str]) -> EnvironmentKey:
    if bool(pr) == bool(deployment):
        raise click.UsageError('Pass exactly one of --pr or --deployment')
    return EnvironmentKey(project_id=project, pr=pr, deployment=deployment)


def _load_app_def(path: str) -> Dict[str, Any]:
    with open(path) as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f'{path} is not valid JSON: {e}', param_hint='--app-def')


def _orchestrator(ctx) -> Orchestrator:
    return Orchestrator.from_config(load_config(ctx.obj.get('config_path')))


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def environment_options(fn):
    fn = click.option('--deployment', help='Deployment name')(fn)
    fn = click.option('--pr', help='Pull request number')(fn)
    fn = click.option('--project', required=True, help='Project id')(fn)
    return fn


@main.command()
@environment_options
@click.option('--app-def', 'app_def_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Application definition JSON file')
@click.pass_context
def create(ctx, project, pr, deployment, app_def_path):
    """Create an environment."""
    key = _environment_key(project, pr, deployment)
    app_def = _load_app_def(app_def_path)

    try:
        result = asyncio.run(_orchestrator(ctx).create(key, app_def))
    except ClusternatorError as e:
        _fail(e)

    if ctx.obj['json']:
        _json_output({'cluster_name': key.cluster_name, 'status': 'created', 'steps': result})
    else:
        _human_output(f"Created {key.cluster_name} ({key.label})")
        dns = result.get('dns') or {}
        if dns.get('Name'):
            _human_output(f"  DNS: {dns['Name'].rstrip('.')}")


@main.command()
@environment_options
@click.option('--app-def', 'app_def_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Application definition JSON file')
@click.pass_context
def update(ctx, project, pr, deployment, app_def_path):
    """Replace the services of an environment."""
    key = _environment_key(project, pr, deployment)
    app_def = _load_app_def(app_def_path)

    try:
        service = asyncio.run(_orchestrator(ctx).update(key, app_def))
    except ClusternatorError as e:
        _fail(e)

    if ctx.obj['json']:
        _json_output({'cluster_name': key.cluster_name, 'status': 'updated', 'service': service})
    else:
        _human_output(f"Updated {key.cluster_name}: service {service.get('serviceName')}")


@main.command()
@environment_options
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy(ctx, project, pr, deployment, yes):
    """Destroy an environment (best effort)."""
    key = _environment_key(project, pr, deployment)

    if not yes and not ctx.obj['json']:
        click.confirm(f"Destroy {key.cluster_name} ({key.label})?", abort=True)

    try:
        cluster_name = asyncio.run(_orchestrator(ctx).destroy(key))
    except ClusternatorError as e:
        _fail(e)

    if ctx.obj['json']:
        _json_output({'cluster_name': cluster_name, 'status': 'destroyed'})
    else:
        _human_output(f"Destroyed {cluster_name}; check the log for steps that failed")


@main.command()
@environment_options
@click.pass_context
def describe(ctx, project, pr, deployment):
    """Show the tagged resources of an environment."""
    key = _environment_key(project, pr, deployment)

    try:
        snapshot = asyncio.run(_orchestrator(ctx).describe(key))
    except ClusternatorError as e:
        _fail(e)

    if ctx.obj['json']:
        _json_output(snapshot)
        return

    _human_output(f"{key.cluster_name} ({key.label})")
    _human_output(f"  Security groups: {', '.join(snapshot.get('security_groups') or []) or '-'}")
    for instance in snapshot.get('instances') or []:
        _human_output(f"  Instance: {instance['InstanceId']} ({instance['State']})")
    cluster = snapshot.get('cluster')
    _human_output(f"  Cluster: {cluster['clusterArn'] if cluster else '-'}")
    for service_arn in snapshot.get('services') or []:
        _human_output(f"  Service: {service_arn}")
    dns = snapshot.get('dns')
    _human_output(f"  DNS: {dns['Name'].rstrip('.') if dns else '-'}")


@main.command(name='list')
@click.option('--project', required=True, help='Project id')
@click.pass_context
def list_environments(ctx, project):
    """List the environments of a project."""
    try:
        keys = asyncio.run(_orchestrator(ctx).list_environments(project))
    except ClusternatorError as e:
        _fail(e)

    if ctx.obj['json']:
        _json_output({'project': project, 'environments': [
            {'pr': key.pr, 'deployment': key.deployment, 'cluster_name': key.cluster_name}
            for key in keys
        ]})
        return

    if not keys:
        _human_output(f"No environments for project {project}")
    for key in keys:
        _human_output(f"{key.cluster_name} ({key.label})")


if __name__ == '__main__':
    main()
