import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_NETWORK_NAME, INSTANCE_FLAVOR_NAME
from .core import ImageTaster, TasterError
from .models import Settings, SshKeys
from .services.compliance import DEFAULT_PROFILE_PATH
from .services.config_loader import ConfigLoader
from .services.openstack_client import OpenStackClient

DEFAULT_CONFIG_FILE = ".imagetaster.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.argument("images", nargs=-1)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML configuration file. Defaults to .imagetaster.yml if present.",
)
@click.option("--ssh-user", required=False, help="User to log into the instance with.")
@click.option("--security/--no-security", default=None, help="Run the security suite (default: on).")
@click.option("--volumes/--no-volumes", default=None, help="Run the volume suite (default: on).")
@click.option(
    "--create-snapshot/--no-create-snapshot",
    default=None,
    help="Snapshot the instance when tests fail (default: off).",
)
@click.option(
    "--pass-on-suite-error/--fail-on-suite-error",
    default=None,
    help="Count the security suite as passed when it cannot run (default: pass).",
)
@click.option("--log-dir", required=False, type=click.Path(), help="Directory for session logs (default: ./logs).")
@click.option("--log-file", required=False, type=click.Path(), help="Path to an application log file.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--network", required=False, help="Network to attach the instance to (default: public).")
@click.option("--flavor", required=False, help="Flavor of the instance (default: m1.tiny).")
@click.option("--keypair", required=False, help="Name of the OpenStack keypair to inject.")
@click.option("--private-key", required=False, type=click.Path(), help="Private key matching the keypair.")
@click.option("--public-key", required=False, type=click.Path(), help="Public key matching the keypair.")
@click.option("--suite-path", required=False, type=click.Path(), help="InSpec profile to run.")
@click.option("--auth-url", envvar="OS_AUTH_URL", required=False, help="Identity endpoint.")
@click.option("--username", envvar="OS_USERNAME", required=False, help="OpenStack user name.")
@click.option("--password", envvar="OS_PASSWORD", required=False, help="OpenStack password.")
@click.option("--project-name", envvar="OS_PROJECT_NAME", required=False, help="OpenStack project.")
@click.option("--user-domain-name", envvar="OS_USER_DOMAIN_NAME", required=False, help="User domain.")
@click.option("--project-domain-name", envvar="OS_PROJECT_DOMAIN_NAME", required=False, help="Project domain.")
@click.option("--region-name", envvar="OS_REGION_NAME", required=False, help="OpenStack region.")
def main(
    images,
    config,
    ssh_user,
    security,
    volumes,
    create_snapshot,
    pass_on_suite_error,
    log_dir,
    log_file,
    verbose,
    network,
    flavor,
    keypair,
    private_key,
    public_key,
    suite_path,
    auth_url,
    username,
    password,
    project_name,
    user_domain_name,
    project_domain_name,
    region_name,
):
    """Provision, test and destroy an instance of each IMAGE."""
    logger = logging.getLogger("imagetaster")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except TasterError as exc:
        raise click.ClickException(str(exc)) from exc

    images = list(images) or list(config_values.get("images") or [])
    ssh_user = _resolve_option(ssh_user, config_values, "ssh_user")
    settings_kwargs = {
        "security": bool(_resolve_option(security, config_values, "security", default=True)),
        "volumes": bool(_resolve_option(volumes, config_values, "volumes", default=True)),
        "create_snapshot": bool(
            _resolve_option(create_snapshot, config_values, "create_snapshot", default=False)
        ),
        "pass_on_suite_error": bool(
            _resolve_option(pass_on_suite_error, config_values, "pass_on_suite_error", default=True)
        ),
    }
    log_dir = _resolve_option(log_dir, config_values, "log_dir", default=os.path.join(os.getcwd(), "logs"))
    log_file = _resolve_option(log_file, config_values, "log_file")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    network = _resolve_option(network, config_values, "network", default=DEFAULT_NETWORK_NAME)
    flavor = _resolve_option(flavor, config_values, "flavor", default=INSTANCE_FLAVOR_NAME)
    keypair = _resolve_option(keypair, config_values, "keypair")
    private_key = _resolve_option(private_key, config_values, "private_key")
    public_key = _resolve_option(public_key, config_values, "public_key")
    suite_path = _resolve_option(suite_path, config_values, "suite_path", default=DEFAULT_PROFILE_PATH)
    auth_url = _resolve_option(auth_url, config_values, "auth_url")
    username = _resolve_option(username, config_values, "username")
    password = _resolve_option(password, config_values, "password")
    project_name = _resolve_option(project_name, config_values, "project_name")
    user_domain_name = _resolve_option(user_domain_name, config_values, "user_domain_name", default="Default")
    project_domain_name = _resolve_option(
        project_domain_name, config_values, "project_domain_name", default="Default"
    )
    region_name = _resolve_option(region_name, config_values, "region_name")

    if not images:
        raise click.ClickException("Provide at least one IMAGE (or 'images' in config).")
    if not ssh_user:
        raise click.ClickException("Missing required option '--ssh-user' (or provide it in config).")
    if not keypair or not private_key:
        raise click.ClickException("Both '--keypair' and '--private-key' are required (or provide them in config).")
    missing_credentials = [
        name
        for name, value in (
            ("auth_url", auth_url),
            ("username", username),
            ("password", password),
            ("project_name", project_name),
        )
        if not value
    ]
    if missing_credentials:
        raise click.ClickException(
            f"Missing OpenStack credentials: {', '.join(missing_credentials)}. "
            "Use the options, the OS_* environment variables, or the config file."
        )

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        client = OpenStackClient(
            auth_url=auth_url,
            username=username,
            password=password,
            project_name=project_name,
            user_domain_name=user_domain_name,
            project_domain_name=project_domain_name,
            region_name=region_name,
        )
        client.authenticate()
        taster = ImageTaster(
            client=client,
            ssh_keys=SshKeys(keypair=keypair, private_key=private_key, public_key=public_key),
            log_dir=log_dir,
            network_name=network,
            flavor_name=flavor,
            suite_path=suite_path,
        )
    except TasterError as exc:
        raise click.ClickException(str(exc)) from exc

    settings = Settings(ssh_user=ssh_user, **settings_kwargs)
    failed_images = []
    for image_name in images:
        try:
            passed = taster.taste(image_name, settings)
        except TasterError as exc:
            raise click.ClickException(str(exc)) from exc
        logger.info("%s: %s", image_name, "passed" if passed else "failed")
        if not passed:
            failed_images.append(image_name)

    if failed_images:
        click.echo(f"Failed images: {', '.join(failed_images)}", err=True)
    raise SystemExit(1 if failed_images else 0)


if __name__ == "__main__":
    main()
