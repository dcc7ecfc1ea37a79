from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Optional

import typer

from src.cluster.client import connect

from .context import BuildInfo, JobInfo, ReconcileConfig, ReconcileContext, RepositoryInfo
from .errors import DeployError
from .reconciler import Reconciler

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

app = typer.Typer(help="Render a Deployment manifest from build metadata and create or update it in Kubernetes.")


@app.command()
def deploy(
    server: str = typer.Option(
        "",
        "--server",
        envvar=["PLUGIN_SERVER", "KUBE_SERVER"],
        help="Kubernetes API server URL.",
    ),
    token: str = typer.Option(
        "",
        "--token",
        envvar=["PLUGIN_TOKEN", "KUBE_TOKEN"],
        show_default=False,
        help="Base64-encoded bearer token.",
    ),
    ca: str = typer.Option(
        "",
        "--ca",
        envvar=["PLUGIN_CA", "KUBE_CA"],
        show_default=False,
        help="Base64-encoded CA certificate of the API server.",
    ),
    namespace: str = typer.Option(
        "",
        "--namespace",
        "-n",
        envvar=["PLUGIN_NAMESPACE", "KUBE_NAMESPACE"],
        help="Namespace exposed to the template (defaults to 'default').",
    ),
    template: Optional[Path] = typer.Option(
        None,
        "--template",
        "-t",
        envvar=["PLUGIN_TEMPLATE", "KUBE_TEMPLATE"],
        help="Path to the Deployment manifest template.",
    ),
    repo_owner: str = typer.Option("", envvar="DRONE_REPO_OWNER", help="Repository owner."),
    repo_name: str = typer.Option("", envvar="DRONE_REPO_NAME", help="Repository name."),
    build_tag: str = typer.Option("", envvar="DRONE_TAG", help="Git tag of the build."),
    build_event: str = typer.Option("", envvar="DRONE_BUILD_EVENT", help="Event that triggered the build."),
    build_number: int = typer.Option(0, envvar="DRONE_BUILD_NUMBER", help="Build number."),
    build_commit: str = typer.Option("", envvar="DRONE_COMMIT_SHA", help="Commit SHA."),
    build_ref: str = typer.Option("", envvar="DRONE_COMMIT_REF", help="Commit ref."),
    build_branch: str = typer.Option("", envvar="DRONE_COMMIT_BRANCH", help="Commit branch."),
    build_author: str = typer.Option("", envvar="DRONE_COMMIT_AUTHOR", help="Commit author."),
    build_status: str = typer.Option("", envvar="DRONE_BUILD_STATUS", help="Build status."),
    build_link: str = typer.Option("", envvar="DRONE_BUILD_LINK", help="Build URL."),
    build_started: int = typer.Option(0, envvar="DRONE_BUILD_STARTED", help="Build start (unix seconds)."),
    build_created: int = typer.Option(0, envvar="DRONE_BUILD_CREATED", help="Build creation (unix seconds)."),
    job_started: int = typer.Option(0, envvar="DRONE_JOB_STARTED", help="Job start (unix seconds)."),
    request_timeout: Optional[float] = typer.Option(
        None,
        "--request-timeout",
        min=0,
        help="Timeout in seconds for each Kubernetes API request.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    _configure_logging(verbose)
    context = ReconcileContext(
        repo=RepositoryInfo(owner=repo_owner, name=repo_name),
        build=BuildInfo(
            tag=build_tag,
            event=build_event,
            number=build_number,
            commit=build_commit,
            ref=build_ref,
            branch=build_branch,
            author=build_author,
            status=build_status,
            link=build_link,
            started=build_started,
            created=build_created,
        ),
        job=JobInfo(started=job_started),
        config=ReconcileConfig(
            server=server,
            ca=ca,
            token=token,
            namespace=namespace,
            template=str(template) if template is not None else "",
        ),
    )

    reconciler = Reconciler(partial(connect, request_timeout=request_timeout))
    try:
        result = reconciler.run(context)
    except DeployError as exc:
        typer.echo(f"{exc.kind}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(str(result))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    # urllib3 connection chatter is not useful in pipeline output.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


if __name__ == "__main__":  # pragma: no cover
    app()
